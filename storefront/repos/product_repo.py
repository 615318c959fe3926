# storefront/repos/product_repo.py
from decimal import Decimal
from sqlalchemy.orm import Session
from storefront.data.models.product import ProductModel, ProductVariantModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_variant(self, variant_id: int) -> ProductVariantModel | None:
        return self.db.get(ProductVariantModel, variant_id)

    def unit_price(self, product: ProductModel, variant: ProductVariantModel | None) -> Decimal:
        # wariant moze nadpisac cene produktu
        if variant is not None and variant.price is not None:
            return Decimal(variant.price)
        return Decimal(product.price)
