"""
Load test for the storefront API.

Hammers the catalog and the stock reduction endpoint concurrently, then checks
that the stock left on each product matches the number of successful
reductions (no overselling), and prints p50/p90/p95/p99 latency.
"""
import argparse
import asyncio
import json
import statistics
import time
from collections import defaultdict
from datetime import datetime

import aiohttp
import jwt


class LoadTester:
    def __init__(self, base_url="http://localhost:8000", total_requests=2000, concurrent_workers=50,
                 token=None):
        self.base_url = base_url
        self.total_requests = total_requests
        self.concurrent_workers = concurrent_workers
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.results = {
            "successful": 0,
            "failed": 0,
            "timeouts": 0,
            "response_times": [],
            "errors": defaultdict(int),
            "status_codes": defaultdict(int),
        }
        self.reduced = defaultdict(int)

    async def make_request(self, session, endpoint, method="GET", json_data=None):
        """Make a single HTTP request and track metrics"""
        url = f"{self.base_url}{endpoint}"
        start_time = time.time()
        try:
            async with session.request(method, url, json=json_data, headers=self.headers,
                                       timeout=aiohttp.ClientTimeout(total=30)) as response:
                body = await response.text()
                elapsed = time.time() - start_time
                self.results["response_times"].append(elapsed)
                self.results["status_codes"][response.status] += 1
                if response.status < 400:
                    self.results["successful"] += 1
                else:
                    self.results["failed"] += 1
                if endpoint == "/inventory/reduce-stock" and response.status == 200:
                    for r in json.loads(body).get("results", []):
                        self.reduced[(r["productId"], r.get("size"))] += r["quantity"]
                return elapsed, response.status
        except asyncio.TimeoutError:
            self.results["timeouts"] += 1
            self.results["errors"]["Timeout"] += 1
            return time.time() - start_time, "TIMEOUT"
        except aiohttp.ClientError as e:
            self.results["failed"] += 1
            self.results["errors"][type(e).__name__] += 1
            return time.time() - start_time, "ERROR"

    async def worker(self, session, task_queue):
        while True:
            task = await task_queue.get()
            if task is None:  # Poison pill
                task_queue.task_done()
                break
            endpoint, method, data = task
            await self.make_request(session, endpoint, method, data)
            task_queue.task_done()

    async def snapshot(self, session, product_ids):
        stock = {}
        for pid in product_ids:
            async with session.get(f"{self.base_url}/products/{pid}") as response:
                stock[pid] = (await response.json())["product"]
        return stock

    async def run_test(self, scenarios, product_ids):
        """
        scenarios: list of tuples (endpoint, method, json_data, weight)
        weight: proportion of requests (e.g., 0.5 = 50% of requests)
        """
        print(f"\n{'='*80}")
        print("LOAD TEST STARTED")
        print(f"Base URL: {self.base_url}  Requests: {self.total_requests:,}  Workers: {self.concurrent_workers}")
        print(f"{'='*80}\n")

        task_queue = asyncio.Queue()
        for endpoint, method, data, weight in scenarios:
            for _ in range(int(self.total_requests * weight)):
                await task_queue.put((endpoint, method, data))

        connector = aiohttp.TCPConnector(limit=self.concurrent_workers)
        async with aiohttp.ClientSession(connector=connector) as session:
            before = await self.snapshot(session, product_ids)
            start_time = time.time()
            workers = [asyncio.create_task(self.worker(session, task_queue)) for _ in range(self.concurrent_workers)]
            for _ in workers:
                await task_queue.put(None)
            await asyncio.gather(*workers)
            total_time = time.time() - start_time
            after = await self.snapshot(session, product_ids)

        self.print_results(total_time)
        return self.check_stock(before, after)

    def check_stock(self, before, after):
        ok = True
        print("\nSTOCK CONSISTENCY:")
        for pid, prod in before.items():
            sizes = prod["size_stock"]
            if sizes:
                for label, qty in sizes.items():
                    expected = qty - self.reduced[(pid, label)]
                    actual = after[pid]["size_stock"].get(label)
                    ok &= self._report(f"{pid}/{label}", expected, actual)
                ok &= self._report(f"{pid} total", sum(after[pid]["size_stock"].values()), after[pid]["stock"])
            else:
                ok &= self._report(str(pid), prod["stock"] - self.reduced[(pid, None)], after[pid]["stock"])
        return ok

    @staticmethod
    def _report(label, expected, actual):
        good = expected == actual and (actual or 0) >= 0
        print(f"  {label:<20} expected={expected} actual={actual} {'OK' if good else 'MISMATCH'}")
        return good

    def print_results(self, total_time):
        print(f"\n{'='*80}")
        print("LOAD TEST RESULTS")
        print(f"{'='*80}\n")
        print(f"  Total Time: {total_time:.2f} seconds")
        print(f"  Successful: {self.results['successful']:,}")
        print(f"  Failed: {self.results['failed']:,}")
        print(f"  Timeouts: {self.results['timeouts']:,}")
        print(f"  Requests/sec: {self.total_requests/total_time:.2f}")

        response_times = sorted(self.results["response_times"])
        if response_times:
            print("\nRESPONSE TIMES (LATENCY):")
            print(f"  Mean: {statistics.mean(response_times)*1000:.2f} ms")
            for p in (50, 90, 95, 99):
                print(f"  p{p}: {response_times[int(len(response_times) * p / 100)]*1000:.2f} ms")

        if self.results["status_codes"]:
            print("\nSTATUS CODES:")
            for code, count in sorted(self.results["status_codes"].items(), key=lambda x: str(x[0])):
                print(f"  {code}: {count:,}")
        if self.results["errors"]:
            print("\nERRORS:")
            for error, count in sorted(self.results["errors"].items(), key=lambda x: x[1], reverse=True):
                print(f"  {error}: {count:,}")

        results_file = f"load_test_results_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        with open(results_file, "w") as f:
            json.dump({
                "total_time": total_time,
                "total_requests": self.total_requests,
                "successful": self.results["successful"],
                "failed": self.results["failed"],
                "status_codes": {str(k): v for k, v in self.results["status_codes"].items()},
                "errors": dict(self.results["errors"]),
            }, f, indent=2)
        print(f"\nResults saved to: {results_file}\n")


async def main():
    parser = argparse.ArgumentParser(description="Concurrent stock reduction load test")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--requests", type=int, default=2000)
    parser.add_argument("--workers", type=int, default=50)
    parser.add_argument("--secret", default="secret123", help="JWT_SECRET of the server")
    parser.add_argument("--sized-product", type=int, default=1)
    parser.add_argument("--size", default="M")
    parser.add_argument("--plain-product", type=int, default=3)
    args = parser.parse_args()

    token = jwt.encode({"id": 1, "role": "user", "exp": int(time.time()) + 3600}, args.secret, algorithm="HS256")

    # (endpoint, method, json_data, weight)
    scenarios = [
        ("/products", "GET", None, 0.30),
        (f"/products/{args.sized_product}", "GET", None, 0.20),
        ("/inventory/reduce-stock", "POST",
         {"items": [{"productId": args.sized_product, "size": args.size, "quantity": 1}]}, 0.25),
        ("/inventory/reduce-stock", "POST",
         {"items": [{"productId": args.plain_product, "quantity": 1}]}, 0.25),
    ]

    tester = LoadTester(args.base_url, args.requests, args.workers, token)
    consistent = await tester.run_test(scenarios, [args.sized_product, args.plain_product])
    raise SystemExit(0 if consistent else 1)


if __name__ == "__main__":
    asyncio.run(main())
