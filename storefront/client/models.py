# storefront/client/models.py
import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from storefront.domain.schemas import DiscountOut


def make_item_id(
    product_id: int,
    variant_id: Optional[int] = None,
    personalizations: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Deterministyczne id linii: produkt-wariant[-hash personalizacji].
    Te same dane -> to samo id -> zwiekszenie ilosci zamiast nowej linii.
    """
    base = f"{product_id}-{variant_id if variant_id is not None else 'default'}"
    if personalizations:
        raw = json.dumps(personalizations, sort_keys=True, default=str)
        return f"{base}-{hashlib.sha1(raw.encode('utf-8')).hexdigest()[:8]}"
    return base


class CartItem(BaseModel):
    id: str
    product_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(..., ge=1)
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    personalizations: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    # tylko do wyswietlania
    name: Optional[str] = None
    size: Optional[str] = None
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self):
        return (self.product_id, self.variant_id)

    @property
    def label(self) -> str:
        name = self.name or f"Product {self.product_id}"
        return f"{name} ({self.size})" if self.size else name


class PersistedCart(BaseModel):
    items: List[CartItem] = []
    discounts: List[DiscountOut] = []
    gift_cards: List[str] = []
    cart_id: Optional[str] = None


class CartEvent(BaseModel):
    """Wynik komendy koszyka, UI/obserwator zamienia go na toast."""

    type: str
    level: Literal["success", "error", "info"] = "success"
    message: str
    description: Optional[str] = None
    item: Optional[CartItem] = None
    payload: Dict[str, Any] = {}

    @property
    def ok(self) -> bool:
        return self.level != "error"
