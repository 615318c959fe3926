# storefront/repos/inventory_repo.py
from typing import List
from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from storefront.data.models.product import ProductVariantModel
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class InventoryRepo:
    """
    Liczniki magazynowe wariantow.
    Jedyny wspoldzielony stan miedzy requestami to inventory_reserved,
    zmieniany tylko warunkowym UPDATE (check + increment w jednym zapytaniu).
    """

    def __init__(self, db: Session):
        self.db = db

    def get_variant(self, variant_id: int) -> ProductVariantModel | None:
        return self.db.execute(
            select(ProductVariantModel)
            .where(ProductVariantModel.id == variant_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_product_variants(self, product_id: int) -> List[ProductVariantModel]:
        return list(
            self.db.execute(
                select(ProductVariantModel)
                .where(ProductVariantModel.product_id == product_id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    @staticmethod
    def available(variant: ProductVariantModel) -> int:
        return variant.inventory_quantity - variant.inventory_reserved

    def reserve(self, variant_id: int, quantity: int) -> int:
        # np UPDATE ... SET reserved = reserved + 1 WHERE id = 7 AND quantity - reserved >= 1
        # rowcount 0 = brak towaru albo wariant niedostepny
        stmt = (
            update(ProductVariantModel)
            .where(
                ProductVariantModel.id == variant_id,
                ProductVariantModel.is_available.is_(True),
                ProductVariantModel.inventory_quantity - ProductVariantModel.inventory_reserved >= quantity,
            )
            .values(inventory_reserved=ProductVariantModel.inventory_reserved + quantity)
            .execution_options(synchronize_session=False)
        )
        rowcount = self.db.execute(stmt).rowcount
        logger.info(f"Reserve {quantity} of variant {variant_id}: rowcount={rowcount}")
        return rowcount

    def release(self, variant_id: int, quantity: int) -> int:
        reserved = ProductVariantModel.inventory_reserved
        stmt = (
            update(ProductVariantModel)
            .where(ProductVariantModel.id == variant_id)
            .values(inventory_reserved=case((reserved >= quantity, reserved - quantity), else_=0))
            .execution_options(synchronize_session=False)
        )
        rowcount = self.db.execute(stmt).rowcount
        logger.info(f"Release {quantity} of variant {variant_id}: rowcount={rowcount}")
        return rowcount

    def deduct(self, variant_id: int, quantity: int) -> int:
        """Wysylka: rezerwacja zamienia sie na faktyczne zdjecie ze stanu."""
        reserved = ProductVariantModel.inventory_reserved
        stmt = (
            update(ProductVariantModel)
            .where(ProductVariantModel.id == variant_id)
            .values(
                inventory_quantity=ProductVariantModel.inventory_quantity - quantity,
                inventory_reserved=case((reserved >= quantity, reserved - quantity), else_=0),
            )
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount
