import csv
import os

from .database import SessionLocal, create_tables
from .models import Product
from ..utils.logger import get_logger

logger = get_logger("data")

MENU_CSV_PATH = os.path.join(os.path.dirname(__file__), "raw", "kopitiam_menu.csv")


def populate_products(session_factory=SessionLocal, csv_path: str = MENU_CSV_PATH, bind=None) -> int:
    """Read the menu CSV and populate the products table.

    Returns the number of products inserted (0 when the table already had rows).
    """
    # Ensure tables are created
    create_tables(bind=bind)

    db = session_factory()
    try:
        if db.query(Product).count() > 0:
            logger.info("Products table is not empty. Skipping population.")
            return 0

        inserted = 0
        with open(csv_path, mode="r", encoding="utf-8") as csvfile:
            reader = csv.DictReader(csvfile)
            for row in reader:
                product = Product(
                    sku=row["sku"].strip(),
                    name=row["name"].strip(),
                    description=row.get("description", "").strip(),
                    price=float(row["price"].replace("$", "")),
                    category=row["category"].strip(),
                    popularity_rank=int(row.get("popularity_rank") or 100),
                )
                db.add(product)
                inserted += 1

        db.commit()
        logger.info(f"Populated the products table with {inserted} products.")
        return inserted
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    populate_products()
