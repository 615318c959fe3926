# storefront/data/seed.py
from datetime import datetime, timezone, timedelta
from decimal import Decimal

from storefront.data.database import SessionLocal, init_db
from storefront.data.models import (
    CouponModel,
    GiftCardModel,
    ProductModel,
    ProductVariantModel,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def _variants(sku: str, stock: dict):
    return [
        ProductVariantModel(sku=f"{sku}-{size}", size=size, inventory_quantity=qty)
        for size, qty in stock.items()
    ]


def seed():
    init_db()
    db = SessionLocal()
    try:
        # tylko pusta baza
        if db.query(ProductModel).first():
            logger.info("Catalog already seeded, skipping")
            return

        db.add_all(
            [
                ProductModel(
                    name="Silk Evening Gown",
                    slug="silk-evening-gown",
                    sku="GOWN",
                    price=Decimal("1250.00"),
                    compare_at_price=Decimal("1500.00"),
                    variants=_variants("GOWN", {"S": 3, "M": 5, "L": 1}),
                ),
                ProductModel(
                    name="Cashmere Scarf",
                    slug="cashmere-scarf",
                    sku="SCARF",
                    price=Decimal("50.00"),
                    variants=_variants("SCARF", {"ONE": 20}),
                ),
                # bez wariantow = bez sledzenia stanu
                ProductModel(
                    name="Digital Styling Session",
                    slug="digital-styling-session",
                    sku="STYLE",
                    price=Decimal("99.00"),
                ),
                CouponModel(code="WELCOME10", discount_type="percentage", discount_value=Decimal("10")),
                CouponModel(
                    code="SAVE50",
                    discount_type="fixed",
                    discount_value=Decimal("50"),
                    minimum_amount=Decimal("500"),
                    valid_until=datetime.now(timezone.utc) + timedelta(days=90),
                ),
                GiftCardModel(code="GIFT-100", balance=Decimal("100.00")),
            ]
        )
        db.commit()
        logger.info("Demo catalog seeded")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
