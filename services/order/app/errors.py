"""
Order Service — エラー分類

下流サービスごとの例外と、注文処理全体の失敗 (OrderFailure) を定義する。
呼び出し側が依存してよいのは失敗の種類 (kind) だけで、メッセージ文言は契約ではない。
"""

from enum import Enum
from typing import Any

from .circuit_breaker import BreakerStatus


# ── 下流サービスの例外 ───────────────────────────


class ServiceError(Exception):
    """下流サービス呼び出しの失敗"""


class BookNotFoundError(ServiceError):
    """カタログに該当する本が無い"""


class CatalogUnavailableError(ServiceError):
    """カタログサービスに到達できない、または異常な応答"""


class PaymentError(ServiceError):
    """決済の失敗(ブレーカーの失敗数に数えられる)"""


class PaymentRejectedError(PaymentError):
    """決済サービスがエラーを返した"""


class PaymentTimeoutError(PaymentError):
    """決済サービスが時間内に応答しなかった"""


class PaymentUnreachableError(PaymentError):
    """決済サービスに接続できなかった"""


# ── 注文処理の失敗 ───────────────────────────────


class FailureKind(str, Enum):
    INVALID_REQUEST = "InvalidRequest"
    BOOK_NOT_FOUND = "BookNotFound"
    CATALOG_UNAVAILABLE = "CatalogUnavailable"
    PAYMENT_CIRCUIT_OPEN = "PaymentCircuitOpen"
    PAYMENT_REJECTED = "PaymentRejected"
    PAYMENT_TIMEOUT = "PaymentTimeout"
    PAYMENT_UNREACHABLE = "PaymentUnreachable"
    UNCLASSIFIED = "Unclassified"


# kind → (HTTP ステータス, 後で再試行する価値があるか)
_KIND_RESPONSE: dict[FailureKind, tuple[int, bool]] = {
    FailureKind.INVALID_REQUEST: (400, False),
    FailureKind.BOOK_NOT_FOUND: (404, False),
    FailureKind.CATALOG_UNAVAILABLE: (503, True),
    FailureKind.PAYMENT_CIRCUIT_OPEN: (503, True),
    FailureKind.PAYMENT_REJECTED: (502, True),
    FailureKind.PAYMENT_TIMEOUT: (504, True),
    FailureKind.PAYMENT_UNREACHABLE: (502, True),
    FailureKind.UNCLASSIFIED: (500, False),
}


class OrderFailure(Exception):
    """
    注文処理の失敗。どの段階 (step) で何が起きたか (kind) を持つ。

    step: "validate" | "catalog_lookup" | "pricing" | "payment"
    circuit: PaymentCircuitOpen のときのブレーカー状態
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        *,
        step: str,
        detail: str | None = None,
        order_id: str | None = None,
        circuit: BreakerStatus | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.step = step
        self.detail = detail
        self.order_id = order_id
        self.circuit = circuit

    @property
    def status_code(self) -> int:
        return _KIND_RESPONSE[self.kind][0]

    @property
    def retryable(self) -> bool:
        return _KIND_RESPONSE[self.kind][1]

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "error": self.kind.value,
            "message": self.message,
            "step": self.step,
            "retryable": self.retryable,
        }
        if self.order_id:
            body["order_id"] = self.order_id
        if self.detail:
            body["details"] = self.detail
        if self.circuit is not None:
            body["circuit_breaker"] = self.circuit.model_dump(mode="json")
        return body
