import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from ..app.config import Config

# Define the database file path
DB_PATH = os.path.join(os.path.dirname(__file__), "catalog.db")
DATABASE_URL = Config.DATABASE_URL or f"sqlite:///{DB_PATH}"

# Create a base class for our models
Base = declarative_base()


def make_engine(url: str = DATABASE_URL):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url == "sqlite://" or (url.startswith("sqlite") and ":memory:" in url):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


# Create the SQLAlchemy engine
engine = make_engine()

# Create a configured "Session" class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(bind=None):
    """Create all tables in the database."""
    # Import all models here before calling create_all
    # This ensures they are registered with the Base metadata
    from .models import Product  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    create_tables()
    print("Database tables created successfully.")
