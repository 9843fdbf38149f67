from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError
from quart import request

from .errors import InvalidArgument, validation_detail

M = TypeVar("M", bound=BaseModel)


async def parse_body(model: Type[M]) -> M:
    """Parse the JSON request body into ``model`` or raise InvalidArgument."""
    data = await request.get_json(force=True, silent=True)
    if data is None:
        raise InvalidArgument("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidArgument("Invalid request body", validation_detail(e))
