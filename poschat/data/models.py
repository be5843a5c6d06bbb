from sqlalchemy import Boolean, Column, Float, Integer, String

from .database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, default="")
    price = Column(Float, nullable=False)
    category = Column(String, index=True)
    # Lower rank sells more
    popularity_rank = Column(Integer, nullable=False, default=100)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Product {self.sku} {self.name!r} {self.price:.2f}>"
