# storefront/api/deps.py
import secrets
from typing import Optional

from fastapi import Header, HTTPException

from storefront.domain.schemas import CurrentUser
from storefront.services.lock_service import LockService
from storefront.services.payment_gateway import PaymentGateway
from storefront.utils.settings import OPERATOR_TOKEN


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> Optional[CurrentUser]:
    # naglowki ustawia proxy dostawcy tozsamosci, brak = gosc
    if x_user_id is None:
        return None
    return CurrentUser(user_id=x_user_id, email=x_user_email)


def require_operator(x_operator_token: Optional[str] = Header(None)) -> None:
    """Zmiany statusu zamowien tylko z zaplecza sklepu."""
    if not x_operator_token:
        raise HTTPException(status_code=401, detail="Operator credentials required")
    if not OPERATOR_TOKEN or not secrets.compare_digest(x_operator_token, OPERATOR_TOKEN):
        raise HTTPException(status_code=403, detail="Not allowed to change order status")


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway()


def get_lock_service() -> LockService:
    return LockService()
