from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime

from storefront.data.database import Base


class GiftCardModel(Base):
    __tablename__ = "gift_cards"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False, unique=True)
    balance = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
