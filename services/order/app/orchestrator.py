"""
Order Orchestrator — 注文処理

中央のオーケストレーターが各サービスへの呼び出しを順に制御し、
失敗の種類ごとに異なる応答 (OrderFailure.kind) に対応付ける。

  フロー:
  ┌─────────────────────────────────────────────────────────┐
  │  1. リクエストを検証              (失敗 → InvalidRequest)  │
  │  2. Catalog Service で本を取得    (ブレーカーなし)         │
  │  3. 合計金額を計算 (小数第 2 位で四捨五入)                 │
  │  4. Payment Service に決済を依頼  (ブレーカー経由)         │
  │     ├─ ブレーカーが拒否 → PaymentCircuitOpen              │
  │     ├─ 決済失敗 → Rejected / Timeout / Unreachable        │
  │     └─ 成功 → OrderResult                                 │
  └─────────────────────────────────────────────────────────┘

リトライはしない。1 回の place_order で決済は最大 1 回。
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import InvalidOperation
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from .circuit_breaker import BreakerOpenError, CircuitBreaker
from .clients import CatalogClient, PaymentClient
from .errors import (
    BookNotFoundError,
    CatalogUnavailableError,
    FailureKind,
    OrderFailure,
    PaymentRejectedError,
    PaymentTimeoutError,
    PaymentUnreachableError,
)
from .events import OrderFailed, OrderPlaced
from .models import OrderRequest, OrderResult, round_money
from .publisher import ORDER_CHANNEL, EventPublisher

logger = logging.getLogger(__name__)

_PAYMENT_FAILURES: list[tuple[type[Exception], FailureKind]] = [
    (PaymentRejectedError, FailureKind.PAYMENT_REJECTED),
    (PaymentTimeoutError, FailureKind.PAYMENT_TIMEOUT),
    (PaymentUnreachableError, FailureKind.PAYMENT_UNREACHABLE),
]


def new_order_id() -> str:
    """試行ごとに一意な注文 ID (時刻 + ランダム値)"""
    return f"ORDER-{int(time.time() * 1000)}-{uuid4().hex[:8]}"


class OrderOrchestrator:
    """注文処理のオーケストレーター"""

    def __init__(
        self,
        catalog: CatalogClient,
        payment: PaymentClient,
        breaker: CircuitBreaker,
        order_id_factory: Callable[[], str] = new_order_id,
        publisher: EventPublisher | None = None,
    ):
        self.catalog = catalog
        self.payment = payment
        self.breaker = breaker
        self.order_id_factory = order_id_factory
        self.publisher = publisher

    async def place_order(self, request: OrderRequest | Any) -> OrderResult:
        """
        注文を処理する。

        成功時は OrderResult を返し、失敗時は OrderFailure を送出する。
        呼び出し側は OrderFailure.kind で振る舞いを決める。
        """
        try:
            result = await self._place_order(request)
        except OrderFailure as failure:
            logger.warning(
                "Order failed at step %s: %s (%s)",
                failure.step,
                failure.kind.value,
                failure.detail or failure.message,
            )
            self._publish(
                OrderFailed(
                    order_id=failure.order_id,
                    kind=failure.kind.value,
                    step=failure.step,
                    message=failure.message,
                    timestamp=datetime.now(timezone.utc),
                )
            )
            raise

        logger.info(
            "Order %s completed: %s x%d = %s",
            result.order_id,
            result.book_title,
            result.quantity,
            result.total_cost,
        )
        return result

    async def _place_order(self, request: OrderRequest | Any) -> OrderResult:
        # ── Step 1: 検証 ────────────────────────────
        order = self._validate(request)
        logger.info("Received order: book_id=%d quantity=%d", order.book_id, order.quantity)

        # ── Step 2: 本の情報を取得 ──────────────────
        try:
            book = await self.catalog.get_book(order.book_id)
        except BookNotFoundError as e:
            raise OrderFailure(
                FailureKind.BOOK_NOT_FOUND,
                "Book not found",
                step="catalog_lookup",
                detail=str(e),
            ) from e
        except CatalogUnavailableError as e:
            raise OrderFailure(
                FailureKind.CATALOG_UNAVAILABLE,
                "Catalog service unavailable",
                step="catalog_lookup",
                detail=str(e),
            ) from e
        except Exception as e:
            logger.exception("Unclassified catalog failure for book %d", order.book_id)
            raise OrderFailure(
                FailureKind.UNCLASSIFIED,
                "Order processing failed",
                step="catalog_lookup",
                detail=f"{type(e).__name__}: {e}",
            ) from e

        # ── Step 3: 合計金額 ────────────────────────
        try:
            total_cost = round_money(book.unit_price * order.quantity)
        except InvalidOperation as e:
            # 28 桁の精度に収まらない金額
            raise OrderFailure(
                FailureKind.INVALID_REQUEST,
                "Invalid order data",
                step="pricing",
                detail=f"total cost out of range for quantity {order.quantity}",
            ) from e
        logger.info("Found book: %s at %s, total cost %s", book.title, book.unit_price, total_cost)

        # ── Step 4: 決済 (ブレーカー経由) ───────────
        order_id = self.order_id_factory()
        try:
            confirmation = await self.breaker.execute(
                lambda: self.payment.submit(total_cost, order_id)
            )
        except BreakerOpenError as e:
            raise OrderFailure(
                FailureKind.PAYMENT_CIRCUIT_OPEN,
                "Payment service temporarily unavailable",
                step="payment",
                order_id=order_id,
                circuit=e.status,
            ) from e
        except Exception as e:
            raise self._payment_failure(e, order_id) from e

        self._publish(
            OrderPlaced(
                order_id=order_id,
                book_id=book.id,
                quantity=order.quantity,
                total_cost=total_cost,
                transaction_id=confirmation.transaction_id,
                timestamp=datetime.now(timezone.utc),
            )
        )
        return OrderResult(
            order_id=order_id,
            book_title=book.title,
            quantity=order.quantity,
            unit_price=round_money(book.unit_price),
            total_cost=total_cost,
            payment_confirmation=confirmation.transaction_id,
        )

    def _validate(self, request: OrderRequest | Any) -> OrderRequest:
        if isinstance(request, OrderRequest):
            return request
        try:
            return OrderRequest.model_validate(request)
        except ValidationError as e:
            raise OrderFailure(
                FailureKind.INVALID_REQUEST,
                "Invalid order data",
                step="validate",
                detail="; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
                    for err in e.errors()
                ),
            ) from e

    def _payment_failure(self, exc: Exception, order_id: str) -> OrderFailure:
        for exc_type, kind in _PAYMENT_FAILURES:
            if isinstance(exc, exc_type):
                return OrderFailure(
                    kind,
                    "Payment failed",
                    step="payment",
                    detail=str(exc),
                    order_id=order_id,
                )
        logger.exception("Unclassified payment failure for order %s", order_id)
        return OrderFailure(
            FailureKind.UNCLASSIFIED,
            "Order processing failed",
            step="payment",
            detail=f"{type(exc).__name__}: {exc}",
            order_id=order_id,
        )

    def _publish(self, event: OrderPlaced | OrderFailed) -> None:
        if self.publisher is not None:
            self.publisher.enqueue(ORDER_CHANNEL, event)
