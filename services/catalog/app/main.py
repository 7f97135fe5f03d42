"""
Catalog Service — FastAPI エントリーポイント

本のカタログを返すだけの読み取り専用サービス。
Order Service からは安価で安定した依存先として扱われる
(サーキットブレーカーでは保護されない)。
"""

import logging
import os

from fastapi import FastAPI, HTTPException

from . import queries

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Catalog Service")


# ── Query Endpoints ──────────────────────────────


@app.get("/books")
async def list_books():
    """全書籍を返す"""
    logger.info("Received request for all books")
    return queries.list_books()


@app.get("/books/{book_id}")
async def get_book(book_id: int):
    """指定した書籍を返す"""
    book = queries.get_book(book_id)
    if not book:
        logger.info("Book with ID %d not found", book_id)
        raise HTTPException(404, "Book not found")
    logger.info("Found book: %s", book["title"])
    return book


@app.get("/health")
async def health():
    return {"status": "ok", "service": "catalog-service"}
