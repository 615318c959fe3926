# storefront/repos/order_repo.py
from datetime import datetime
from typing import List
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from storefront.data.models.order import OrderModel
from storefront.domain.order_status import PAID


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        # bez commita, transakcja nalezy do serwisu
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.get(OrderModel, order_id)

    def list_user_orders(self, user_id: int) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel)
                .where(OrderModel.user_id == user_id)
                .order_by(OrderModel.created_at.desc())
            ).scalars()
        )

    def count_paid_orders(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(OrderModel.id)).where(
                OrderModel.user_id == user_id,
                OrderModel.status.in_([s.value for s in PAID]),
            )
        ).scalar_one()

    def stale_orders(self, status: str, created_before: datetime) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel).where(
                    OrderModel.status == status,
                    OrderModel.created_at < created_before,
                )
            ).scalars()
        )

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
