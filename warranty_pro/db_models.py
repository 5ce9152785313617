from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.sqlite import JSON as SqliteJSON
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class UserDB(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("username"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # username is the canonical owner id used across warranties, claims and notifications
    username: Mapped[str] = mapped_column(String, unique=True, index=True)
    role: Mapped[str] = mapped_column(String, default="user", index=True)
    hashed_password: Mapped[str] = mapped_column(String)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class WarrantyDB(Base):
    __tablename__ = "warranties"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    product_name: Mapped[str] = mapped_column(String)
    brand: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    retailer: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    purchase_date: Mapped[date] = mapped_column(Date)
    coverage_months: Mapped[int] = mapped_column(Integer, default=12)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class NotificationDB(Base):
    __tablename__ = "notifications"
    __table_args__ = (UniqueConstraint("user_id", "warranty_id", "type", name="uq_notification_alert"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    warranty_id: Mapped[str] = mapped_column(String, index=True)
    type: Mapped[str] = mapped_column(String, index=True)  # thirty_day | seven_day | expiry_day | expired
    title: Mapped[str] = mapped_column(String)
    message: Mapped[str] = mapped_column(Text)
    product_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    days_until_expiry: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    delivery_attempted: Mapped[bool] = mapped_column(Boolean, default=False)
    delivery_success: Mapped[bool] = mapped_column(Boolean, default=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivery_error: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class ClaimDB(Base):
    __tablename__ = "claims"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    warranty_id: Mapped[str] = mapped_column(String, ForeignKey("warranties.id", ondelete="CASCADE"), index=True)
    claim_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    issue_description: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    conversation = Column(SqliteJSON, default=list)
    troubleshooting_steps = Column(SqliteJSON, default=list)
    severity: Mapped[Optional[str]] = mapped_column(String, nullable=True)  # low | medium | high
    recommend_claim: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    reasoning = Column(Text, nullable=True)
    email_subject: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    email_body = Column(Text, nullable=True)
    email_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    email_sent_to: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    email_delivery_failed: Mapped[bool] = mapped_column(Boolean, default=False)
    email_delivery_error: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    notes = Column(Text, nullable=True)
    resolution = Column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ClaimCounterDB(Base):
    __tablename__ = "claim_counters"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0)


class AuditLogDB(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String, index=True)
    detail = Column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
