# storefront/repos/coupon_repo.py
from decimal import Decimal
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from storefront.data.models.coupon import CouponModel, CouponUseModel
from storefront.data.models.gift_card import GiftCardModel


class CouponRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> CouponModel | None:
        return self.db.execute(
            select(CouponModel)
            .where(CouponModel.code == code.strip().upper())
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def count_user_uses(self, coupon_id: int, user_id: int) -> int:
        return self.db.execute(
            select(func.count(CouponUseModel.id)).where(
                CouponUseModel.coupon_id == coupon_id,
                CouponUseModel.user_id == user_id,
            )
        ).scalar_one()

    def claim_use(self, coupon_id: int) -> bool:
        """
        Warunkowy UPDATE: limit sprawdzany i zwiekszany w jednym zapytaniu.
        False gdy limit zostal juz wyczerpany.
        """
        result = self.db.execute(
            update(CouponModel)
            .where(
                CouponModel.id == coupon_id,
                or_(
                    CouponModel.usage_limit.is_(None),
                    CouponModel.usage_count < CouponModel.usage_limit,
                ),
            )
            .values(usage_count=CouponModel.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def record_use(self, coupon_id: int, user_id: int, order_id: int, discount_amount: Decimal):
        self.db.add(
            CouponUseModel(
                coupon_id=coupon_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=discount_amount,
            )
        )

    def release_order_uses(self, order_id: int) -> int:
        uses = list(
            self.db.execute(select(CouponUseModel).where(CouponUseModel.order_id == order_id)).scalars()
        )
        for use in uses:
            self.db.execute(
                update(CouponModel)
                .where(CouponModel.id == use.coupon_id, CouponModel.usage_count > 0)
                .values(usage_count=CouponModel.usage_count - 1)
                .execution_options(synchronize_session=False)
            )
            self.db.delete(use)
        return len(uses)

    def get_gift_card(self, code: str) -> GiftCardModel | None:
        return self.db.execute(
            select(GiftCardModel).where(GiftCardModel.code == code.strip().upper())
        ).scalar_one_or_none()
