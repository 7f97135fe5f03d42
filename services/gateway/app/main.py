"""
API Gateway

フロントエンド(やトラフィックジェネレーター)向けの唯一の入口。
各バックエンドサービスへリクエストを中継する。

  ┌──────────┐     ┌─────────┐     ┌─────────────────┐
  │  Client  │────▶│ Gateway │────▶│ Catalog Service │
  │          │     │         │────▶│ Order Service   │
  │          │     │         │────▶│ Payment Service │ (疎通確認のみ)
  └──────────┘     └─────────┘     └─────────────────┘

バックエンドのステータスコードと JSON はそのまま返す。
バックエンドに到達できない場合は 503 を返す。
"""

import asyncio
import logging
import os

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

CATALOG_SERVICE_URL = os.environ.get("CATALOG_SERVICE_URL", "http://catalog:5000")
ORDER_SERVICE_URL = os.environ.get("ORDER_SERVICE_URL", "http://order:5001")
PAYMENT_SERVICE_URL = os.environ.get("PAYMENT_SERVICE_URL", "http://payment:5002")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# テストでは httpx.MockTransport に差し替える
transport: httpx.AsyncBaseTransport | None = None

app = FastAPI(title="Online Bookstore API Gateway")


def _client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, transport=transport)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("Gateway: %s %s", request.method, request.url.path)
    return await call_next(request)


async def _forward(
    service: str,
    method: str,
    url: str,
    timeout: float,
    json: dict | None = None,
) -> JSONResponse:
    """バックエンドへ中継し、応答をそのまま返す。"""
    async with _client(timeout) as client:
        try:
            resp = await client.request(method, url, json=json)
        except httpx.HTTPError as e:
            logger.warning("Gateway: %s service error - %s", service, e)
            raise HTTPException(503, f"{service.capitalize()} service unavailable") from e

    logger.info("Gateway: %s responded with status %d", service, resp.status_code)
    try:
        content = resp.json()
    except ValueError:
        content = {"detail": resp.text}
    headers = None
    if "retry-after" in resp.headers:
        headers = {"Retry-After": resp.headers["retry-after"]}
    return JSONResponse(status_code=resp.status_code, content=content, headers=headers)


# ── エンドポイント一覧 ───────────────────────────


@app.get("/")
async def index():
    return {
        "message": "Welcome to Online Bookstore API Gateway!",
        "endpoints": {
            "books": "GET /api/books - Get all books",
            "book": "GET /api/books/{book_id} - Get specific book",
            "order": "POST /api/order - Place an order",
            "circuit_status": "GET /api/circuit-status - Check circuit breaker status",
        },
    }


# ── 中継 API ─────────────────────────────────────


@app.get("/api/books")
async def get_books():
    """書籍一覧(Catalog Service へ中継)"""
    return await _forward("catalog", "GET", f"{CATALOG_SERVICE_URL}/books", 30.0)


@app.get("/api/books/{book_id}")
async def get_book(book_id: int):
    return await _forward("catalog", "GET", f"{CATALOG_SERVICE_URL}/books/{book_id}", 30.0)


@app.post("/api/order")
async def place_order(request: Request):
    """
    注文(Order Service へ中継)

    本文は検証せずにそのまま渡す。検証と失敗の分類は Order Service の責務。
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    return await _forward("order", "POST", f"{ORDER_SERVICE_URL}/order", 30.0, json=payload)


@app.get("/api/circuit-status")
async def get_circuit_status():
    return await _forward("order", "GET", f"{ORDER_SERVICE_URL}/circuit-status", 10.0)


# ── 疎通確認 ─────────────────────────────────────


@app.get("/test-connectivity")
async def test_connectivity():
    """各バックエンドへ並列に疎通確認する"""
    targets = {
        "catalog": f"{CATALOG_SERVICE_URL}/books",
        "order": f"{ORDER_SERVICE_URL}/health",
        "payment": f"{PAYMENT_SERVICE_URL}/health",
    }
    async with _client(3.0) as client:
        results = await asyncio.gather(
            *(_probe(client, url) for url in targets.values())
        )
    return dict(zip(targets, results))


async def _probe(client: httpx.AsyncClient, url: str) -> str:
    try:
        resp = await client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        return f"FAILED: {e}"
    return "OK"


@app.get("/health")
async def health():
    return {"status": "ok", "service": "api-gateway"}
