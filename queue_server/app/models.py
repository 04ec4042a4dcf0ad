# queue_server/app/models.py
from datetime import datetime, timezone

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer, String, Text,
                        UniqueConstraint)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .config import settings
from .db import Base

WAITING = "waiting"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

TOKEN_STATUSES = (WAITING, IN_PROGRESS, COMPLETED, CANCELLED)
ACTIVE_STATUSES = (WAITING, IN_PROGRESS)


def utcnow():
    # sub-second precision: created_at is the queue ordering key
    return datetime.now(timezone.utc)


class Branch(Base):
    __tablename__ = "branches"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    services = relationship("Service", back_populates="branch")


class Service(Base):
    __tablename__ = "services"
    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    prefix = Column(String(8), nullable=True)
    estimated_duration = Column(Integer, nullable=False,
                                default=settings.default_estimated_duration)  # minutes
    status = Column(String, nullable=False, default="active")

    branch = relationship("Branch", back_populates="services")


class Counter(Base):
    __tablename__ = "counters"
    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Staff(Base):
    __tablename__ = "staff"
    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), index=True, nullable=False)
    counter_id = Column(Integer, ForeignKey("counters.id"), nullable=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="staff")
    status = Column(String, nullable=False, default="active")


class Token(Base):
    __tablename__ = "tokens"
    __table_args__ = (
        UniqueConstraint("branch_id", "service_id", "scope_date", "token_number",
                         name="uq_token_number_scope"),
    )
    id = Column(Integer, primary_key=True)
    token_number = Column(String, index=True, nullable=False)
    branch_id = Column(Integer, ForeignKey("branches.id"), index=True, nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), index=True, nullable=False)
    scope_date = Column(String(8), index=True, nullable=False)  # 'YYYYMMDD'
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, index=True, nullable=False)
    status = Column(String, index=True, nullable=False, default=WAITING)
    position_in_queue = Column(Integer, nullable=True)
    estimated_wait_time = Column(Integer, nullable=False, default=0)  # minutes
    counter_id = Column(Integer, ForeignKey("counters.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    branch = relationship("Branch")
    service = relationship("Service")
    counter = relationship("Counter")


# per-scope numbering counter: one row per (branch, service, day)
class TokenCounter(Base):
    __tablename__ = "token_counters"
    __table_args__ = (
        UniqueConstraint("branch_id", "service_id", "scope_date", name="uq_token_counter_scope"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_id = Column(Integer, nullable=False)
    service_id = Column(Integer, nullable=False)
    scope_date = Column(String(8), nullable=False)
    last_seq = Column(Integer, nullable=False, default=0)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True)
    entity = Column(String)
    entity_id = Column(Integer)
    action = Column(String)
    user = Column(String)
    details = Column(Text)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
