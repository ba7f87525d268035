# tixgo/infrastructure/repositories/user_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from tixgo.infrastructure.db.models import User
from tixgo.domain.moderation import UserRole


class UserRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, user_id: str) -> User | None:
        stmt = select(User).where(User.id == user_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_users(self, role: UserRole | None = None) -> list[User]:
        stmt = select(User).order_by(User.created_at.desc())
        if role is not None:
            stmt = stmt.where(User.role == role)
        return list(self.db.execute(stmt).scalars().all())

    def upsert_profile(self, email: str, **profile) -> User:
        user = self.get_by_email(email)

        if user:
            for field, value in profile.items():
                setattr(user, field, value)
            return user

        user = User(email=email, role=UserRole.USER, is_fraud=False, **profile)
        self.db.add(user)
        self.db.flush()
        return user

    def set_role(
        self,
        user_id: str,
        role: UserRole,
        clear_fraud: bool = False,
    ) -> bool:
        values = {"role": role}
        if clear_fraud:
            values["is_fraud"] = False

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(**values)
            .returning(User.id)
        )
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def mark_fraud(self, user_id: str) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(is_fraud=True)
        )
        self.db.execute(stmt)
