"""
Order Service — FastAPI エントリーポイント

注文オーケストレーターを HTTP API として公開する。
Payment Service への呼び出しはサーキットブレーカーで保護する。

起動時 (lifespan) に組み立てるもの:
  - 共有の httpx.AsyncClient と Catalog / Payment クライアント
  - 決済用サーキットブレーカー(プロセスに 1 つ)
  - Redis へのイベントパブリッシャー
  - オーケストレーター
"""

import asyncio
import logging
import math
import os
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .circuit_breaker import CircuitBreaker
from .clients import CatalogClient, PaymentClient
from .errors import FailureKind, OrderFailure
from .orchestrator import OrderOrchestrator
from .publisher import CIRCUIT_CHANNEL, EventPublisher

CATALOG_SERVICE_URL = os.environ.get("CATALOG_SERVICE_URL", "http://catalog:5000")
PAYMENT_SERVICE_URL = os.environ.get("PAYMENT_SERVICE_URL", "http://payment:5002")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
CB_FAILURE_THRESHOLD = int(os.environ.get("CB_FAILURE_THRESHOLD", "3"))
CB_RESET_TIMEOUT = float(os.environ.get("CB_RESET_TIMEOUT", "10"))
CATALOG_TIMEOUT = float(os.environ.get("CATALOG_TIMEOUT", "5"))
PAYMENT_TIMEOUT = float(os.environ.get("PAYMENT_TIMEOUT", "8"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# テストでは httpx.MockTransport に差し替える
transport: httpx.AsyncBaseTransport | None = None

breaker: CircuitBreaker | None = None
orchestrator: OrderOrchestrator | None = None


async def check_connectivity(
    catalog: CatalogClient, payment: PaymentClient, delay: float = 2.0
) -> None:
    """起動直後に下流サービスへの疎通を確認してログに残す。"""
    await asyncio.sleep(delay)
    logger.info("Testing service connectivity...")
    if await catalog.ping():
        logger.info("Catalog service is reachable")
    if await payment.ping():
        logger.info("Payment service is reachable")


@asynccontextmanager
async def lifespan(app: FastAPI):
    global breaker, orchestrator
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    publisher = EventPublisher(redis_pool)
    http_client = httpx.AsyncClient(transport=transport)

    catalog = CatalogClient(CATALOG_SERVICE_URL, http_client, timeout=CATALOG_TIMEOUT)
    payment = PaymentClient(PAYMENT_SERVICE_URL, http_client, timeout=PAYMENT_TIMEOUT)
    breaker = CircuitBreaker(
        "payment",
        failure_threshold=CB_FAILURE_THRESHOLD,
        reset_timeout=CB_RESET_TIMEOUT,
    )
    breaker.add_listener(lambda event: publisher.enqueue(CIRCUIT_CHANNEL, event))
    orchestrator = OrderOrchestrator(catalog, payment, breaker, publisher=publisher)

    shutdown_event = asyncio.Event()
    publisher_task = asyncio.create_task(publisher.run(shutdown_event))
    connectivity_task = asyncio.create_task(check_connectivity(catalog, payment))
    logger.info(
        "Order Service started (threshold=%d, reset_timeout=%.1fs)",
        CB_FAILURE_THRESHOLD,
        CB_RESET_TIMEOUT,
    )
    yield

    connectivity_task.cancel()
    shutdown_event.set()
    await publisher_task
    await http_client.aclose()
    await redis_pool.aclose()


app = FastAPI(title="Order Service", lifespan=lifespan)


@app.exception_handler(OrderFailure)
async def order_failure_handler(request: Request, exc: OrderFailure):
    headers = None
    if exc.kind is FailureKind.PAYMENT_CIRCUIT_OPEN and breaker is not None:
        headers = {"Retry-After": str(math.ceil(breaker.reset_timeout))}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.post("/order")
async def place_order(request: Request):
    """
    注文を受け付ける。

    本文の検証もオーケストレーターに任せる(FastAPI の 422 ではなく
    InvalidRequest として応答するため、生の JSON をそのまま渡す)。
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    result = await orchestrator.place_order(payload)
    return {"success": True, **result.model_dump(mode="json")}


@app.get("/circuit-status")
async def circuit_status():
    """決済用サーキットブレーカーの状態"""
    return breaker.status()


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
