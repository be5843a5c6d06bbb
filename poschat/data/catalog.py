"""Product catalog service backed by the SQLAlchemy ``products`` table.

Search is deliberately plain: case-insensitive substring matching on name,
SKU, category and description, ranked exact name/SKU first, then name prefix,
then name substring, then the rest, with popularity breaking ties.
"""
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import func, or_

from .database import SessionLocal
from .models import Product


class ProductInfo(BaseModel):
    sku: str
    name: str
    category: str = ""
    price: float
    description: str = ""
    popularity_rank: int = 100

    @classmethod
    def from_row(cls, row: Product) -> "ProductInfo":
        return cls(
            sku=row.sku,
            name=row.name,
            category=row.category or "",
            price=row.price,
            description=row.description or "",
            popularity_rank=row.popularity_rank,
        )


def _rank(product: ProductInfo, term: str) -> int:
    name = product.name.lower()
    if name == term or product.sku.lower() == term:
        return 0
    if name.startswith(term):
        return 1
    if term in name:
        return 2
    if term in product.category.lower():
        return 3
    return 4


class ProductCatalog:
    """Read-only access to the active products."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def _query(self, db):
        return db.query(Product).filter(Product.is_active.is_(True))

    def search(self, term: str, max_results: int = 10) -> List[ProductInfo]:
        term = (term or "").strip().lower()
        db = self.session_factory()
        try:
            query = self._query(db)
            if term:
                pattern = f"%{term}%"
                query = query.filter(or_(
                    func.lower(Product.name).like(pattern),
                    func.lower(Product.sku) == term,
                    func.lower(Product.category).like(pattern),
                    func.lower(Product.description).like(pattern),
                ))
            products = [ProductInfo.from_row(row) for row in query.all()]
        finally:
            db.close()

        if term:
            products.sort(key=lambda p: (_rank(p, term), p.popularity_rank, p.name))
        else:
            products.sort(key=lambda p: (p.popularity_rank, p.name))
        return products[:max_results]

    def get_by_sku(self, sku: str) -> Optional[ProductInfo]:
        db = self.session_factory()
        try:
            row = self._query(db).filter(func.lower(Product.sku) == (sku or "").lower()).first()
            return ProductInfo.from_row(row) if row else None
        finally:
            db.close()

    def find(self, identifier: str) -> Optional[ProductInfo]:
        """Look a product up by SKU or exact name."""
        key = (identifier or "").strip().lower()
        if not key:
            return None
        db = self.session_factory()
        try:
            row = self._query(db).filter(or_(
                func.lower(Product.sku) == key,
                func.lower(Product.name) == key,
            )).first()
            return ProductInfo.from_row(row) if row else None
        finally:
            db.close()

    def popular(self, count: int = 5) -> List[ProductInfo]:
        return self.search("", max_results=count)

    def categories(self) -> List[str]:
        db = self.session_factory()
        try:
            rows = self._query(db).with_entities(Product.category).distinct().all()
        finally:
            db.close()
        return sorted(row[0] for row in rows if row[0])

    def all_products(self, limit: int = 100) -> List[ProductInfo]:
        return self.search("", max_results=limit)
