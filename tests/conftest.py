"""共通フィクスチャ: 差し替え可能な時計と、下流サービスのフェイク"""

from decimal import Decimal

import pytest

from services.order.app.circuit_breaker import CircuitBreaker
from services.order.app.errors import BookNotFoundError, PaymentRejectedError
from services.order.app.models import Book, PaymentConfirmation
from services.order.app.orchestrator import OrderOrchestrator


class FakeClock:
    """単調時計の代わり。advance() で時間を進める。"""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCatalog:
    def __init__(self, books: dict[int, Book] | None = None, error: Exception | None = None):
        self.books = books if books is not None else {}
        self.error = error
        self.calls: list[int] = []

    async def get_book(self, book_id: int) -> Book:
        self.calls.append(book_id)
        if self.error is not None:
            raise self.error
        if book_id not in self.books:
            raise BookNotFoundError(f"Book {book_id} not found")
        return self.books[book_id]


class FakePayment:
    """error を設定すると毎回その例外を送出する。"""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[Decimal, str]] = []

    async def submit(self, amount: Decimal, reference_id: str, timeout: float | None = None):
        self.calls.append((amount, reference_id))
        if self.error is not None:
            raise self.error
        return PaymentConfirmation(
            transaction_id=f"TXN-{len(self.calls)}",
            amount=amount,
            status="completed",
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker("payment", failure_threshold=3, reset_timeout=10.0, clock=clock)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog({1: Book.model_validate({"id": 1, "title": "X", "price": 15.99})})


@pytest.fixture
def payment() -> FakePayment:
    return FakePayment()


@pytest.fixture
def failing_payment() -> FakePayment:
    return FakePayment(PaymentRejectedError("Payment service returned 500"))


@pytest.fixture
def order_ids():
    counter = iter(range(1, 1000))
    return lambda: f"ORDER-{next(counter)}"


@pytest.fixture
def orchestrator(catalog, payment, breaker, order_ids) -> OrderOrchestrator:
    return OrderOrchestrator(catalog, payment, breaker, order_id_factory=order_ids)
