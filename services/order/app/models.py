"""
Order Service — ドメインモデル

金額はすべて Decimal で扱う。JSON には数値として出力する。
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    StrictInt,
)

CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    """小数第 2 位に四捨五入(ROUND_HALF_UP)する。"""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Any:
    # float は 10 進文字列を経由させる (12.555 → Decimal("12.555"))
    if isinstance(value, float):
        return Decimal(str(value))
    return value


Money = Annotated[
    Decimal,
    BeforeValidator(to_decimal),
    PlainSerializer(float, return_type=float, when_used="json"),
]


class OrderRequest(BaseModel):
    """注文リクエスト。bookID / book_id のどちらでも受け付ける。"""
    model_config = ConfigDict(frozen=True)

    book_id: StrictInt = Field(gt=0, validation_alias=AliasChoices("bookID", "book_id"))
    quantity: StrictInt = Field(gt=0)


class Book(BaseModel):
    """カタログサービスの本"""
    id: int = Field(validation_alias=AliasChoices("id", "book_id", "bookID"))
    title: str
    unit_price: Money = Field(ge=0, validation_alias=AliasChoices("price", "unit_price"))


class PaymentConfirmation(BaseModel):
    """決済サービスの成功応答"""
    transaction_id: str
    amount: Money | None = None
    status: str = "completed"


class OrderResult(BaseModel):
    """注文成功の結果"""
    order_id: str
    book_title: str
    quantity: int
    unit_price: Money
    total_cost: Money
    payment_confirmation: str
