# storefront/repos/cart_repo.py
from datetime import datetime
from typing import List
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart(self, cart_id: str) -> CartModel | None:
        return self.db.get(CartModel, cart_id)

    def get_active_cart_by_user(self, user_id: int, exclude_id: str | None = None) -> CartModel | None:
        stmt = select(CartModel).where(
            CartModel.user_id == user_id,
            CartModel.is_abandoned.is_(False),
        )
        if exclude_id:
            stmt = stmt.where(CartModel.id != exclude_id)
        return self.db.execute(stmt.order_by(CartModel.updated_at.desc())).scalars().first()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.flush()
        return cart

    def replace_items(self, cart: CartModel, items: List[CartItemModel]):
        # najpierw usun wszystko, potem wstaw nowe linie
        cart.items.clear()
        self.db.flush()
        cart.items.extend(items)
        self.db.flush()

    def delete_cart(self, cart: CartModel):
        self.db.delete(cart)

    def abandon_stale(self, updated_before: datetime) -> int:
        return self.db.execute(
            update(CartModel)
            .where(
                CartModel.is_abandoned.is_(False),
                CartModel.updated_at < updated_before,
            )
            .values(is_abandoned=True)
            .execution_options(synchronize_session=False)
        ).rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
