"""
Order Service — 下流サービスのクライアント

Catalog Service と Payment Service を httpx で呼び出し、
HTTP / 通信レベルの失敗をドメインの例外に変換する。

  Catalog:  404 → BookNotFoundError
            それ以外の失敗 → CatalogUnavailableError
  Payment:  タイムアウト → PaymentTimeoutError
            接続不可 → PaymentUnreachableError
            エラー応答 → PaymentRejectedError
"""

import logging
from decimal import Decimal

import httpx
from pydantic import ValidationError

from .errors import (
    BookNotFoundError,
    CatalogUnavailableError,
    PaymentRejectedError,
    PaymentTimeoutError,
    PaymentUnreachableError,
)
from .models import Book, PaymentConfirmation

logger = logging.getLogger(__name__)


class CatalogClient:
    """カタログサービスのクライアント(ブレーカーでは保護しない)"""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient,
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout

    async def get_book(self, book_id: int) -> Book:
        url = f"{self.base_url}/books/{book_id}"
        logger.info("Calling catalog: GET %s", url)
        try:
            resp = await self.client.get(url, timeout=self.timeout)
            if resp.status_code == 404:
                raise BookNotFoundError(f"Book {book_id} not found")
            resp.raise_for_status()
            return Book.model_validate(resp.json())
        except httpx.HTTPStatusError as e:
            raise CatalogUnavailableError(
                f"Catalog returned {e.response.status_code} for {url}"
            ) from e
        except httpx.HTTPError as e:
            raise CatalogUnavailableError(
                f"Cannot reach catalog at {url}: {type(e).__name__}"
            ) from e
        except (ValueError, ValidationError) as e:
            raise CatalogUnavailableError(f"Malformed catalog response from {url}") from e

    async def ping(self) -> bool:
        try:
            resp = await self.client.get(f"{self.base_url}/books", timeout=3.0)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Cannot reach catalog service: %s", e)
            return False
        return True


class PaymentClient:
    """
    決済サービスのクライアント。

    submit() の timeout は呼び出し側が指定できる。
    タイムアウトは失敗として扱われ、ブレーカーの失敗数に数えられる。
    送信済みの決済リクエストを取り消すことはしない。
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient,
        timeout: float = 8.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout

    async def submit(
        self,
        amount: Decimal,
        reference_id: str,
        timeout: float | None = None,
    ) -> PaymentConfirmation:
        url = f"{self.base_url}/pay"
        logger.info("Calling payment: POST %s (order=%s, amount=%s)", url, reference_id, amount)
        try:
            resp = await self.client.post(
                url,
                json={"amount": float(amount), "order_id": reference_id},
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            raise PaymentTimeoutError(f"Timeout calling {url}") from e
        except httpx.ConnectError as e:
            raise PaymentUnreachableError(f"Cannot connect to {url}") from e

        if resp.is_error:
            raise PaymentRejectedError(
                f"Payment service returned {resp.status_code}: {_error_text(resp)}"
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise PaymentRejectedError("Payment service returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise PaymentRejectedError("Payment service returned an unexpected body")
        if not data.get("success", False):
            raise PaymentRejectedError(data.get("error") or "Payment was not successful")
        try:
            return PaymentConfirmation.model_validate(data)
        except ValidationError as e:
            raise PaymentRejectedError("Payment response missing transaction_id") from e

    async def ping(self) -> bool:
        try:
            resp = await self.client.get(f"{self.base_url}/health", timeout=3.0)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Cannot reach payment service: %s", e)
            return False
        return True


def _error_text(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return resp.text
