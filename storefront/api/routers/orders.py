# storefront/api/routers/orders.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, require_operator
from storefront.data.database import get_db
from storefront.domain.schemas import CurrentUser, OrderOut, OrderStatusIn
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session):
    return OrderService(db)


@router.get("/", response_model=List[OrderOut])
def list_orders(
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    """
    Historia zamowien zalogowanego uzytkownika.
    """
    if user is None:
        raise HTTPException(status_code=401, detail="Sign in to see your orders")
    return get_service(db).list_orders(user)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    email: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    """
    Pobiera szczegoly zamowienia, gosc podaje email z zamowienia.
    """
    return get_service(db).get_order(order_id, user, email)


@router.post("/{order_id}/status", response_model=OrderOut, dependencies=[Depends(require_operator)])
def change_status(
    order_id: int,
    payload: OrderStatusIn,
    db: Session = Depends(get_db),
):
    return get_service(db).transition(order_id, payload.status, payload.tracking_number)
