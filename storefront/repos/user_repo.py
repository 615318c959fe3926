from sqlalchemy import select
from sqlalchemy.orm import Session
from storefront.data.models.user import UserModel


class UserRepo:
    """Konta zarzadza dostawca tozsamosci, tu tylko odczyt poziomu czlonkostwa."""

    def __init__(self, db: Session):
        self.db = db

    def membership_tier(self, user_id: int) -> str | None:
        return self.db.execute(
            select(UserModel.membership_tier).where(UserModel.id == user_id)
        ).scalar_one_or_none()
