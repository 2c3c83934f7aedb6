import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from .models import User


class UserDirectory:
    """User records keyed by normalized phone, backed by the request's DB session."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id) -> User | None:
        if isinstance(user_id, str):
            try:
                user_id = uuid.UUID(user_id)
            except ValueError:
                return None
        return self.db.get(User, user_id)

    def find_by_phone(self, phone: str) -> User | None:
        return self.db.query(User).filter(User.phone == phone).one_or_none()

    def create(self, phone: str, name: str, *, verified: bool = True) -> User:
        now = datetime.utcnow()
        user = User(phone=phone, name=name, is_verified=verified, last_login=now)
        self.db.add(user)
        self.db.flush()
        return user

    def mark_login(self, user: User, name: str | None = None) -> User:
        user.is_verified = True
        user.last_login = datetime.utcnow()
        if name and not user.name:
            user.name = name
        self.db.flush()
        return user

    def update_profile(self, user: User, *, name: str | None = None, email: str | None = None, clear_email: bool = False) -> User:
        if name is not None:
            user.name = name
        if clear_email:
            user.email = None
        elif email is not None:
            user.email = email
        self.db.flush()
        return user
