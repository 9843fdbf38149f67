import logging

from .app import create_app
from .common.config import settings

app = create_app()

if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    logging.getLogger(__name__).info(
        "Starting storefront | instance=%s env=%s db=%s", settings.INSTANCE_ID, settings.APP_ENV,
        settings.DB_URL.split("://", 1)[0],
    )
    app.run(host=settings.APP_HOST, port=settings.APP_PORT)
