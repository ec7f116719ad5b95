"""
Canteen Service - Wallet models

[CONFIG DATA]        parents - balance is a cached projection of the ledger
[TRANSACTIONAL DATA] parent_transactions - append-only, never updated
[TRANSACTIONAL DATA] topups - approval queue feeding the ledger
"""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from canteen.core.utils import utcnow
from canteen.db.database import Base
from canteen.models.menu import JSONType


class Parent(Base):
    """
    [CONFIG DATA] - Keyed by the identity provider's user id.
    balance is in cents and must equal the sum of this parent's transactions.
    """
    __tablename__ = "parents"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # in cents
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    children: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Parent user_id={self.user_id} balance={self.balance}>"


class ParentTransaction(Base):
    """
    [TRANSACTIONAL DATA] - One row per balance change.
    amount is signed cents: positive for credits, negative for debits.
    """
    __tablename__ = "parent_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    parent_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    order_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )


class TopupStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    COMPLETED = "completed"


class PaymentMethod(str, PyEnum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    ONLINE = "online"


class Topup(Base):
    """
    [TRANSACTIONAL DATA] - pending -> approved -> completed, or pending -> declined.
    """
    __tablename__ = "topups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    parent_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # in cents
    status: Mapped[TopupStatus] = mapped_column(
        Enum(TopupStatus, name="topup_status", values_callable=lambda e: [m.value for m in e]),
        default=TopupStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", values_callable=lambda e: [m.value for m in e]),
        default=PaymentMethod.CASH,
        nullable=False,
    )
    transaction_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
