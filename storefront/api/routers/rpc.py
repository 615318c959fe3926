# storefront/api/routers/rpc.py
"""
Drugi punkt wejscia (styl RPC, POST /rpc/{procedure}).
Te same serwisy co REST, tylko inne opakowanie wejscia/wyjscia.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_lock_service, get_payment_gateway
from storefront.data.database import get_db
from storefront.domain.pricing import shipping_rates
from storefront.domain.schemas import (
    CartSyncIn,
    CheckoutValidateIn,
    CreateIntentIn,
    CurrentUser,
    DiscountValidateIn,
    GiftCardValidateIn,
    MergeGuestCartIn,
    OrderLookupIn,
    RpcOut,
    ShippingRatesIn,
    StockCheckIn,
    TaxIn,
    UpdateShippingIn,
)
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.discount_service import DiscountService
from storefront.services.lock_service import LockService
from storefront.services.order_service import OrderService
from storefront.services.payment_gateway import PaymentGateway
from storefront.services.stock_service import StockService

router = APIRouter(prefix="/rpc", tags=["rpc"])


@dataclass
class RpcContext:
    db: Session
    user: Optional[CurrentUser]
    gateway: PaymentGateway
    lock_service: LockService

    def checkout(self) -> CheckoutService:
        return CheckoutService(self.db, self.gateway, self.lock_service)


def _merge(ctx: RpcContext, p: MergeGuestCartIn):
    if ctx.user is None:
        raise PermissionError("Sign in to merge your cart")
    return CartService(ctx.db).merge_guest_cart(p.guest_cart_id, p.user_id, ctx.user)


PROCEDURES: Dict[str, Tuple[Type[BaseModel], Callable[[RpcContext, Any], Any]]] = {
    "cart.sync": (CartSyncIn, lambda ctx, p: CartService(ctx.db).sync(p, ctx.user)),
    "cart.validateStock": (StockCheckIn, lambda ctx, p: StockService(ctx.db).check_availability(p.items)),
    "cart.validateDiscount": (
        DiscountValidateIn,
        lambda ctx, p: DiscountService(ctx.db, ctx.gateway).validate_coupon(p.code, p.subtotal, ctx.user),
    ),
    "cart.validateGiftCard": (GiftCardValidateIn, lambda ctx, p: DiscountService(ctx.db).validate_gift_card(p.code)),
    "cart.mergeGuestCart": (MergeGuestCartIn, _merge),
    "cart.getShippingRates": (ShippingRatesIn, lambda ctx, p: shipping_rates(p.subtotal)),
    "checkout.createIntent": (CreateIntentIn, lambda ctx, p: ctx.checkout().create_intent(p, ctx.user)),
    "checkout.updateShipping": (
        UpdateShippingIn,
        lambda ctx, p: ctx.checkout().update_shipping(p.order_id, p.shipping_method, ctx.user, p.email),
    ),
    "checkout.calculateTax": (TaxIn, lambda ctx, p: CheckoutService.calculate_tax(p)),
    "checkout.validate": (CheckoutValidateIn, lambda ctx, p: ctx.checkout().validate(p, ctx.user)),
    "order.get": (OrderLookupIn, lambda ctx, p: OrderService(ctx.db).get_order(p.order_id, ctx.user, p.email)),
}


@router.post("/{procedure}", response_model=RpcOut)
def call_procedure(
    procedure: str,
    body: Dict[str, Any] = Body(default_factory=dict),
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    lock_service: LockService = Depends(get_lock_service),
):
    entry = PROCEDURES.get(procedure)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Unknown procedure {procedure}")

    schema, handler = entry
    # ValidationError -> 422 w api/errors.py
    payload = schema.model_validate(body)

    ctx = RpcContext(db=db, user=user, gateway=gateway, lock_service=lock_service)
    result = handler(ctx, payload)
    return {"procedure": procedure, "result": jsonable_encoder(result)}
