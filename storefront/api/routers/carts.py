#storefront/api/routers/carts.py
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_payment_gateway
from storefront.data.database import get_db
from storefront.domain.pricing import shipping_rates
from storefront.domain.schemas import (
    CartOut,
    CartSyncIn,
    CurrentUser,
    DiscountOut,
    DiscountValidateIn,
    GiftCardOut,
    GiftCardValidateIn,
    MergeGuestCartIn,
    MergeGuestCartOut,
    ShippingMethod,
    StockCheckIn,
    StockStatusOut,
)
from storefront.services.cart_service import CartService
from storefront.services.discount_service import DiscountService
from storefront.services.payment_gateway import PaymentGateway
from storefront.services.stock_service import StockService

router = APIRouter(prefix="/carts", tags=["carts"])


def get_service(db: Session):
    return CartService(db)


@router.post("/sync", response_model=CartOut)
def sync_cart(
    payload: CartSyncIn,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    return get_service(db).sync(payload, user)


@router.post("/validate-stock", response_model=List[StockStatusOut])
def validate_stock(payload: StockCheckIn, db: Session = Depends(get_db)):
    return StockService(db).check_availability(payload.items)


@router.post("/discounts/validate", response_model=DiscountOut)
def validate_discount(
    payload: DiscountValidateIn,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return DiscountService(db, gateway).validate_coupon(payload.code, payload.subtotal, user)


@router.post("/gift-cards/validate", response_model=GiftCardOut)
def validate_gift_card(payload: GiftCardValidateIn, db: Session = Depends(get_db)):
    return DiscountService(db).validate_gift_card(payload.code)


@router.post("/merge", response_model=MergeGuestCartOut)
def merge_guest_cart(
    payload: MergeGuestCartIn,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    if user is None:
        raise HTTPException(status_code=401, detail="Sign in to merge your cart")
    return get_service(db).merge_guest_cart(payload.guest_cart_id, payload.user_id, user)


@router.get("/shipping-rates", response_model=List[ShippingMethod])
def get_shipping_rates(subtotal: Optional[Decimal] = Query(None, ge=0)):
    return shipping_rates(subtotal)


@router.get("/{cart_id}", response_model=CartOut)
def get_cart(
    cart_id: str,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    cart = get_service(db).get_cart(cart_id, user)
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    return cart
