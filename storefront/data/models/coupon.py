# storefront/data/models/coupon.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey, JSON

from storefront.data.database import Base


class CouponModel(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False, unique=True)

    discount_type = Column(String, nullable=False)  # percentage, fixed
    discount_value = Column(Numeric(10, 2), nullable=False)
    minimum_amount = Column(Numeric(10, 2), nullable=True)

    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    usage_limit_per_user = Column(Integer, nullable=True)

    first_purchase_only = Column(Boolean, nullable=False, default=False)
    #pusta lista = wszystkie poziomy
    membership_tiers = Column(JSON, nullable=False, default=list)


class CouponUseModel(Base):
    __tablename__ = "coupon_uses"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
