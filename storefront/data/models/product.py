# storefront/data/models/product.py
from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True)
    sku = Column(String, nullable=True)

    price = Column(Numeric(10, 2), nullable=False)
    compare_at_price = Column(Numeric(10, 2), nullable=True)
    status = Column(String, nullable=False, default="ACTIVE")  # ACTIVE, DRAFT, ARCHIVED

    variants = relationship(
        "ProductVariantModel",
        back_populates="product",
        cascade="all, delete-orphan",
    )


class ProductVariantModel(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    sku = Column(String, nullable=True)
    size = Column(String, nullable=True)
    color = Column(String, nullable=True)

    #null = cena produktu
    price = Column(Numeric(10, 2), nullable=True)
    compare_at_price = Column(Numeric(10, 2), nullable=True)

    inventory_quantity = Column(Integer, nullable=False, default=0)
    inventory_reserved = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)

    product = relationship("ProductModel", back_populates="variants")

    __table_args__ = (
        CheckConstraint("inventory_reserved >= 0", name="ck_variant_reserved_non_negative"),
    )
