# storefront/api/routers/checkout.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_lock_service, get_payment_gateway
from storefront.data.database import get_db
from storefront.domain.schemas import (
    CheckoutValidateIn,
    CheckoutValidateOut,
    CreateIntentIn,
    CreateIntentOut,
    CurrentUser,
    TaxIn,
    TaxOut,
    UpdateShippingIn,
    UpdateShippingOut,
)
from storefront.services.checkout_service import CheckoutService
from storefront.services.lock_service import LockService
from storefront.services.payment_gateway import PaymentGateway

router = APIRouter(prefix="/checkout", tags=["checkout"])


def get_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    lock_service: LockService = Depends(get_lock_service),
):
    return CheckoutService(db, gateway, lock_service)


@router.post("/intent", response_model=CreateIntentOut, status_code=201)
def create_intent(
    payload: CreateIntentIn,
    svc: CheckoutService = Depends(get_service),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    """
    Rezerwuje towar, tworzy zamowienie i payment intent.
    Zwraca client_secret do dokonczenia platnosci po stronie klienta.
    """
    return svc.create_intent(payload, user)


@router.patch("/shipping", response_model=UpdateShippingOut)
def update_shipping(
    payload: UpdateShippingIn,
    svc: CheckoutService = Depends(get_service),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    return svc.update_shipping(payload.order_id, payload.shipping_method, user, payload.email)


@router.post("/tax", response_model=TaxOut)
def calculate_tax(payload: TaxIn):
    return CheckoutService.calculate_tax(payload)


@router.post("/validate", response_model=CheckoutValidateOut)
def validate_checkout(
    payload: CheckoutValidateIn,
    svc: CheckoutService = Depends(get_service),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    return svc.validate(payload, user)
