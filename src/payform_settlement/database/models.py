"""SQLAlchemy models for order settlement persistence."""

import uuid
import json
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class OrderStatus(str, enum.Enum):
    """Order lifecycle. Transitions only move forward."""
    CREATED = "created"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    OrderStatus.PAID.value,
    OrderStatus.FAILED.value,
    OrderStatus.CANCELLED.value,
})


class SettlementAction(str, enum.Enum):
    """Kinds of entries in the settlement audit trail."""
    CREATED = "created"
    PROVIDER_ORDER_CREATED = "provider_order_created"
    SETTLED = "settled"


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class Order(Base):
    """One payment request issued to a payer."""
    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_order_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    form_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    payer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payer_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    payee_id: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OrderStatus.CREATED.value)

    # Split, written once at or before the paid transition
    gateway_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    platform_commission: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    net_to_payee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    commission: Mapped[Optional["CommissionRecord"]] = relationship(
        "CommissionRecord",
        back_populates="order",
        uselist=False,
    )
    events: Mapped[List["SettlementEvent"]] = relationship(
        "SettlementEvent",
        back_populates="order",
        order_by="SettlementEvent.created_at",
    )

    __table_args__ = (
        Index("ix_orders_status", "status"),
        Index("ix_orders_created_at", "created_at"),
        Index("ix_orders_payer_form", "payer_email", "form_id", "status"),
        Index("ix_orders_payee_id", "payee_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_split(self) -> bool:
        return self.gateway_fee is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert order to dictionary representation."""
        return {
            "order_id": self.order_id,
            "provider": self.provider,
            "provider_order_ref": self.provider_order_ref,
            "provider_payment_id": self.provider_payment_id,
            "form_id": self.form_id,
            "payer_email": self.payer_email,
            "product_name": self.product_name,
            "gross_amount": _money(self.gross_amount),
            "currency": self.currency,
            "payee_id": self.payee_id,
            "status": self.status,
            "split": {
                "gateway_fee": _money(self.gateway_fee),
                "platform_commission": _money(self.platform_commission),
                "net_to_payee": _money(self.net_to_payee),
            } if self.has_split else None,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
        }


class CommissionRecord(Base):
    """Platform commission booked for an order that reached paid."""
    __tablename__ = "commission_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # One record per order, enforced by the store
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey("orders.order_id"), nullable=False, unique=True)
    payee_id: Mapped[str] = mapped_column(String(255), nullable=False)
    platform_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gateway_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_to_payee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    order: Mapped["Order"] = relationship("Order", back_populates="commission")

    __table_args__ = (
        Index("ix_commission_records_payee_id", "payee_id"),
        Index("ix_commission_records_recorded_at", "recorded_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payee_id": self.payee_id,
            "platform_commission": _money(self.platform_commission),
            "gateway_fee": _money(self.gateway_fee),
            "net_to_payee": _money(self.net_to_payee),
            "commission_rate": _money(self.commission_rate),
            "provider_payment_id": self.provider_payment_id,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }


class SettlementEvent(Base):
    """Append-only audit entry for an order status change."""
    __tablename__ = "settlement_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey("orders.order_id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    # webhook, redirect, sweep or api
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    detail_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    order: Mapped["Order"] = relationship("Order", back_populates="events")

    __table_args__ = (
        Index("ix_settlement_events_created_at", "created_at"),
    )

    @property
    def detail(self) -> Optional[Dict[str, Any]]:
        """Get event detail as dictionary."""
        if self.detail_json:
            return json.loads(self.detail_json)
        return None

    @detail.setter
    def detail(self, value: Optional[Dict[str, Any]]) -> None:
        """Set event detail from dictionary."""
        if value is not None:
            self.detail_json = json.dumps(value, default=str)
        else:
            self.detail_json = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "channel": self.channel,
            "detail": self.detail,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
