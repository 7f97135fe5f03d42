"""
Order Service — イベント定義

サービス内で発生した事実(イベント)を定義する。
イベントは過去形で命名し、不変(immutable)として扱う。
Redis Pub/Sub で外部に通知される。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from .models import Money


class CircuitStateChanged(BaseModel):
    """サーキットブレーカーの状態が遷移した"""
    model_config = ConfigDict(frozen=True)

    event_type: str = "CircuitStateChanged"
    breaker: str
    old_state: str
    new_state: str
    consecutive_failures: int
    timestamp: datetime


class OrderPlaced(BaseModel):
    """注文が完了した(決済成功)"""
    model_config = ConfigDict(frozen=True)

    event_type: str = "OrderPlaced"
    order_id: str
    book_id: int
    quantity: int
    total_cost: Money
    transaction_id: str
    timestamp: datetime


class OrderFailed(BaseModel):
    """注文が失敗した"""
    model_config = ConfigDict(frozen=True)

    event_type: str = "OrderFailed"
    order_id: str | None
    kind: str
    step: str
    message: str
    timestamp: datetime
