"""
Catalog Service — クエリハンドラ (Read 専用)

本のデータはメモリ上の固定リスト。更新系の操作は持たない。
"""

BOOKS: list[dict] = [
    {"id": 1, "title": "The Great Gatsby", "price": 15.99},
    {"id": 2, "title": "To Kill a Mockingbird", "price": 12.50},
    {"id": 3, "title": "1984", "price": 14.75},
    {"id": 4, "title": "Pride and Prejudice", "price": 13.25},
    {"id": 5, "title": "The Catcher in the Rye", "price": 16.80},
]


def list_books() -> list[dict]:
    return [dict(book) for book in BOOKS]


def get_book(book_id: int) -> dict | None:
    for book in BOOKS:
        if book["id"] == book_id:
            return dict(book)
    return None
