import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Uuid
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def default_uuid():
    return uuid.uuid4()


class User(Base):
    __tablename__ = "cleancare_users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    phone = Column(String(10), nullable=False, unique=True, index=True)  # normalized, no country code
    name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)
