"""
Traffic Generator — API Gateway に注文を送り続ける負荷生成ツール

サーキットブレーカーの動きを観察するためのもの。
5 リクエストごとにブレーカーの状態を表示し、最後に集計を表示する。

    python scripts/traffic_generator.py 15 2.0 --gateway http://localhost:3000
"""

import argparse
import asyncio
import random
import sys

import httpx

GATEWAY_URL = "http://localhost:3000"

GREEN = "\x1b[32m"
RED = "\x1b[31m"
YELLOW = "\x1b[33m"
BLUE = "\x1b[34m"
RESET = "\x1b[0m"


class TrafficGenerator:
    def __init__(self, client: httpx.AsyncClient, rng: random.Random | None = None):
        self.client = client
        self.rng = rng or random.Random()
        self.request_count = 0
        self.success_count = 0
        self.failure_count = 0
        self.circuit_breaker_triggered = 0

    async def make_request(self, book_id: int, quantity: int) -> None:
        self.request_count += 1
        request_id = self.request_count
        print(f"{BLUE}Request #{request_id}: Ordering {quantity}x Book ID {book_id}{RESET}")

        try:
            resp = await self.client.post(
                "/api/order",
                json={"bookID": book_id, "quantity": quantity},
                timeout=30.0,
            )
        except httpx.HTTPError as e:
            self.failure_count += 1
            print(f"{RED}Request #{request_id}: ERROR - {e}{RESET}")
            return

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.is_success and body.get("success"):
            self.success_count += 1
            print(f"{GREEN}Request #{request_id}: SUCCESS - {body['total_cost']:.2f}{RESET}")
            return

        self.failure_count += 1
        if body.get("error") == "PaymentCircuitOpen":
            self.circuit_breaker_triggered += 1
            print(f"{YELLOW}Request #{request_id}: CIRCUIT BREAKER OPEN{RESET}")
        else:
            error = body.get("error") or body.get("detail") or resp.status_code
            print(f"{RED}Request #{request_id}: FAILED - {error}{RESET}")

    async def check_circuit_status(self) -> None:
        try:
            resp = await self.client.get("/api/circuit-status", timeout=10.0)
            resp.raise_for_status()
            status = resp.json()
        except httpx.HTTPError:
            print(f"{RED}Failed to get circuit status{RESET}")
            return
        print(f"\n{BLUE}Circuit Breaker Status:{RESET}")
        print(f"   State: {status['state']}")
        print(f"   Failures: {status['consecutive_failures']}/{status['failure_threshold']}\n")

    @property
    def success_rate(self) -> float:
        if not self.request_count:
            return 0.0
        return self.success_count / self.request_count * 100

    def print_stats(self) -> None:
        print(f"\n{BLUE}Traffic Generator Statistics:{RESET}")
        print(f"   Total Requests: {self.request_count}")
        print(f"   Successful: {GREEN}{self.success_count}{RESET}")
        print(f"   Failed: {RED}{self.failure_count}{RESET}")
        print(f"   Circuit Breaker Triggered: {YELLOW}{self.circuit_breaker_triggered}{RESET}")
        print(f"   Success Rate: {self.success_rate:.1f}%\n")

    async def generate(self, total_requests: int = 15, delay: float = 2.0) -> None:
        print(f"{BLUE}Starting Traffic Generator...{RESET}")
        print(f"   Will send {total_requests} requests with {delay}s delay\n")

        for i in range(total_requests):
            await self.make_request(self.rng.randint(1, 5), self.rng.randint(1, 3))
            if (i + 1) % 5 == 0:
                await self.check_circuit_status()
            if i < total_requests - 1:
                await asyncio.sleep(delay)

        await self.check_circuit_status()
        self.print_stats()


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Online Bookstore traffic generator")
    parser.add_argument("requests", nargs="?", type=int, default=15)
    parser.add_argument("delay", nargs="?", type=float, default=2.0)
    parser.add_argument("--gateway", default=GATEWAY_URL)
    args = parser.parse_args(argv)

    print(f"{BLUE}=== Online Bookstore Traffic Generator ==={RESET}\n")
    async with httpx.AsyncClient(base_url=args.gateway) as client:
        try:
            resp = await client.get("/health", timeout=5.0)
            resp.raise_for_status()
        except httpx.HTTPError:
            print(f"{RED}Cannot connect to gateway at {args.gateway}{RESET}")
            return 1
        print(f"{GREEN}Gateway is running{RESET}\n")

        await TrafficGenerator(client).generate(args.requests, args.delay)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print(f"\n{YELLOW}Traffic generator stopped{RESET}")
