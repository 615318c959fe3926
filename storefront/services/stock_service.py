# storefront/services/stock_service.py
from typing import Iterable, List

from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.errors import StockConflictError, VariantRequiredError
from storefront.domain.schemas import StockCheckItem, StockStatusOut
from storefront.repos.inventory_repo import InventoryRepo
from storefront.repos.product_repo import ProductRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class StockService:
    def __init__(self, db: Session):
        self.inventory = InventoryRepo(db)
        self.products = ProductRepo(db)

    #query - odczyt, bez zadnej rezerwacji
    def check_availability(self, items: Iterable[StockCheckItem]) -> List[StockStatusOut]:
        return [self._status(item) for item in items]

    def _status(self, item: StockCheckItem) -> StockStatusOut:
        if item.variant_id:
            variant = self.inventory.get_variant(item.variant_id)
            if not variant or not variant.is_available or variant.product_id != item.product_id:
                return StockStatusOut(
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    in_stock=False,
                    available_quantity=0,
                )

            available = self.inventory.available(variant)
            return StockStatusOut(
                product_id=item.product_id,
                variant_id=item.variant_id,
                in_stock=available >= item.quantity,
                available_quantity=available,
            )

        product = self.products.get_product(item.product_id)
        if not product or product.status != "ACTIVE":
            return StockStatusOut(product_id=item.product_id, in_stock=False, available_quantity=0)

        variants = self.inventory.get_product_variants(item.product_id)
        if not variants:
            # produkt bez wariantow nie ma sledzonego stanu
            return StockStatusOut(product_id=item.product_id, in_stock=True, available_quantity=None)

        total_available = sum(self.inventory.available(v) for v in variants if v.is_available)
        return StockStatusOut(
            product_id=item.product_id,
            in_stock=total_available >= item.quantity,
            available_quantity=total_available,
        )

    def ensure_untracked(self, product_id: int) -> None:
        if not self.inventory.get_product_variants(product_id):
            return
        product = self.products.get_product(product_id)
        raise VariantRequiredError(product_id, product.name if product else f"Product {product_id}")

    #commands
    def reserve_lines(self, items: Iterable) -> None:
        """
        Rezerwuje kazda linie z wariantem w biezacej transakcji.
        Przy braku towaru rzuca StockConflictError ze wszystkimi brakujacymi liniami,
        commit/rollback robi wywolujacy (all-or-nothing).
        """
        failed = []

        for item in items:
            if not item.variant_id:
                # bez wariantu tylko produkty bez sledzonego stanu
                self.ensure_untracked(item.product_id)
                continue

            if self.inventory.reserve(item.variant_id, item.quantity) == 1:
                continue

            variant = self.inventory.get_variant(item.variant_id)
            product = self.products.get_product(item.product_id)
            available = 0
            if variant and variant.is_available:
                available = max(0, self.inventory.available(variant))

            name = product.name if product else f"Product {item.product_id}"
            if variant and variant.size:
                name = f"{name} ({variant.size})"

            failed.append(
                {
                    "product_id": item.product_id,
                    "variant_id": item.variant_id,
                    "name": name,
                    "requested": item.quantity,
                    "available": available,
                }
            )

        if failed:
            logger.warning(f"Stock conflict for {len(failed)} line(s): {failed}")
            raise StockConflictError(failed)

    def release_order(self, order: OrderModel) -> None:
        for item in order.items:
            if item.variant_id:
                self.inventory.release(item.variant_id, item.quantity)
        logger.info(f"Released reservation for order {order.order_number}")

    def deduct_order(self, order: OrderModel) -> None:
        for item in order.items:
            if item.variant_id:
                self.inventory.deduct(item.variant_id, item.quantity)
        logger.info(f"Deducted inventory for order {order.order_number}")
