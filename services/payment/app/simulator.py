"""
Payment Service — 決済シミュレーター

実際の決済は行わない。一定の遅延の後、failure_rate の確率で失敗する。
Order Service のサーキットブレーカーを動かすための障害注入用。
"""

import asyncio
import logging
import random
import string
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_ID_CHARS = string.ascii_lowercase + string.digits


class PaymentOutcome(BaseModel):
    success: bool
    transaction_id: str | None = None
    amount: float | None = None
    status: str | None = None
    error: str | None = None


class PaymentSimulator:
    def __init__(
        self,
        failure_rate: float = 0.3,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError("delays must satisfy 0 <= min_delay <= max_delay")
        self.failure_rate = failure_rate
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.rng = rng or random.Random()
        self.sleep = sleep

    async def process(self, amount: float, order_id: str) -> PaymentOutcome:
        logger.info("Payment request: $%.2f for order %s", amount, order_id)
        roll = self.rng.random()
        await self.sleep(self.rng.uniform(self.min_delay, self.max_delay))

        if roll < self.failure_rate:
            logger.info("Payment failed (random: %.2f)", roll)
            return PaymentOutcome(success=False, error="Payment processing failed")

        transaction_id = self._transaction_id()
        logger.info("Payment successful: %s", transaction_id)
        return PaymentOutcome(
            success=True,
            transaction_id=transaction_id,
            amount=amount,
            status="completed",
        )

    def _transaction_id(self) -> str:
        suffix = "".join(self.rng.choices(_ID_CHARS, k=9))
        return f"TXN-{int(time.time() * 1000)}-{suffix}"
