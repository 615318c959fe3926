#storefront/data/models/cart.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, Boolean, JSON
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class CartModel(Base):
    """Serwerowa kopia koszyka klienta, id to losowy token (koszyki gosci)."""

    __tablename__ = "carts"

    id = Column(String(32), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    coupon_code = Column(String, nullable=True)
    gift_card_codes = Column(JSON, nullable=False, default=list)
    is_abandoned = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
    )
