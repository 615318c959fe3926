# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, List, Literal, Optional
from decimal import Decimal
from datetime import datetime

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------- cart mirror

class CartLineIn(BaseModel):
    """Linia koszyka wysylana przez klienta przy synchronizacji."""

    product_id: int = Field(..., gt=0)
    variant_id: Optional[int] = Field(None, gt=0)
    quantity: int = Field(..., gt=0)
    personalizations: Optional[Dict[str, Any]] = None


class CartSyncIn(BaseModel):
    cart_id: Optional[str] = None
    items: List[CartLineIn] = []
    discount_codes: List[str] = []
    gift_card_codes: List[str] = []


class CartItemOut(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int
    price: Decimal
    personalizations: Optional[Dict[str, Any]] = None


class CartOut(BaseModel):
    cart_id: str
    user_id: Optional[int] = None
    items: List[CartItemOut]
    subtotal: Decimal
    coupon_code: Optional[str] = None
    gift_card_codes: List[str] = []

    model_config = ConfigDict(from_attributes=True)


class MergeGuestCartIn(BaseModel):
    guest_cart_id: str = Field(..., min_length=1)
    user_id: int = Field(..., gt=0)


class MergeGuestCartOut(BaseModel):
    success: bool
    cart_id: Optional[str] = None


# ---------------------------------------------------------------- stock

class StockCheckItem(BaseModel):
    product_id: int = Field(..., gt=0)
    variant_id: Optional[int] = Field(None, gt=0)
    quantity: int = Field(..., gt=0)


class StockStatusOut(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    in_stock: bool
    # None = produkt bez sledzenia stanow
    available_quantity: Optional[int] = None


# ---------------------------------------------------------------- discounts

class DiscountValidateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    subtotal: Optional[Decimal] = Field(None, ge=0)


class DiscountOut(BaseModel):
    """Znormalizowany rabat, ten sam ksztalt trzyma koszyk klienta."""

    code: str
    type: Literal["percentage", "fixed"]
    value: Decimal
    minimum_amount: Optional[Decimal] = None
    expires_at: Optional[datetime] = None


class GiftCardValidateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class GiftCardOut(BaseModel):
    code: str
    balance: Decimal
    currency: str


# ---------------------------------------------------------------- checkout

class Address(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    company: Optional[str] = None
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state_province: Optional[str] = None
    postal_code: str = Field(..., min_length=1)
    country_code: str = Field(..., min_length=2, max_length=2)
    phone: Optional[str] = None


class EstimatedDays(BaseModel):
    min: int = Field(..., ge=0)
    max: int = Field(..., ge=0)


class ShippingMethod(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    price: Decimal = Field(..., ge=0)
    estimated_days: EstimatedDays


class CheckoutItemIn(BaseModel):
    product_id: int = Field(..., gt=0)
    variant_id: Optional[int] = Field(None, gt=0)
    quantity: int = Field(..., gt=0)
    # tylko podpowiedz, cena liczona z katalogu
    price: Decimal = Field(..., gt=0)


class CreateIntentIn(BaseModel):
    items: List[CheckoutItemIn] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Address
    shipping_method: ShippingMethod
    email: str = Field(..., pattern=EMAIL_PATTERN)
    notes: Optional[str] = None
    discount_codes: List[str] = []
    gift_card_codes: List[str] = []
    cart_id: Optional[str] = None


class CreateIntentOut(BaseModel):
    order_id: int
    order_number: str
    client_secret: str
    amount: Decimal


class UpdateShippingIn(BaseModel):
    order_id: int = Field(..., gt=0)
    shipping_method: ShippingMethod
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)


class UpdateShippingOut(BaseModel):
    success: bool
    new_total: Decimal


class TaxAddress(BaseModel):
    country_code: str = Field(..., min_length=2, max_length=2)
    state_province: Optional[str] = None
    postal_code: str


class TaxIn(BaseModel):
    subtotal: Decimal = Field(..., ge=0)
    shipping_address: TaxAddress


class TaxOut(BaseModel):
    tax_rate: Decimal
    tax_amount: Decimal
    taxable_amount: Decimal


class CheckoutValidateIn(BaseModel):
    items: List[StockCheckItem]
    email: str = Field(..., pattern=EMAIL_PATTERN)


class CheckoutValidateOut(BaseModel):
    valid: bool
    errors: List[str]


# ---------------------------------------------------------------- orders

class OrderItemOut(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    product_name: str
    sku: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: Optional[int] = None
    customer_email: str
    status: str
    currency: str
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total: Decimal
    shipping_method: str
    payment_intent_id: Optional[str] = None
    tracking_number: Optional[str] = None
    items: List[OrderItemOut]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderStatusIn(BaseModel):
    status: str
    tracking_number: Optional[str] = None


# ---------------------------------------------------------------- rpc

class RpcOut(BaseModel):
    procedure: str
    result: Any


# ---------------------------------------------------------------- identity

class CurrentUser(BaseModel):
    """Uzytkownik z dostawcy tozsamosci, None w serwisach = gosc."""

    user_id: int
    email: Optional[str] = None


class StockCheckIn(BaseModel):
    items: List[StockCheckItem]


class ShippingRatesIn(BaseModel):
    subtotal: Optional[Decimal] = Field(None, ge=0)


class OrderLookupIn(BaseModel):
    order_id: int = Field(..., gt=0)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
