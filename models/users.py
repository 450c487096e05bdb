"""Account model: credentials, crew profile and subscription state."""
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Uuid, func
from uuid import uuid4
from .conversations import Base

PROFILE_FIELDS = ("full_name", "user_type", "airline", "employee_id")


class User(Base):
    """
    SQLAlchemy model for users.

    Besides credentials it carries the crew profile (job title, airline,
    employee id) and the subscription fields the chat availability rules
    read (plan, status, query count, admin flag).
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)

    full_name = Column(String, nullable=True)
    user_type = Column(String(50), nullable=True)
    airline = Column(String(100), nullable=True)
    employee_id = Column(String(50), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    subscription_plan = Column(String(32), default="free", nullable=False)
    subscription_status = Column(String(32), default="active", nullable=False)
    query_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def profile_complete(self) -> bool:
        return all(getattr(self, field) for field in PROFILE_FIELDS)
