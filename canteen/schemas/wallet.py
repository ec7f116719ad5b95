"""
Canteen Service - Wallet and top-up schemas
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from canteen.core.utils import from_cents
from canteen.db.wallet_ops import REASON_ADJUSTMENT, LedgerAudit
from canteen.models.wallet import Parent, ParentTransaction, PaymentMethod, Topup, TopupStatus


class ParentCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    address: str | None = None
    phone: str | None = Field(None, max_length=32)
    opening_balance: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)


class ParentContactUpdate(BaseModel):
    address: str | None = None
    phone: str | None = Field(None, max_length=32)


class ParentResponse(BaseModel):
    user_id: str
    balance: Decimal
    address: str | None
    phone: str | None
    children: list[str]

    @classmethod
    def from_model(cls, parent: Parent) -> "ParentResponse":
        return cls(
            user_id=parent.user_id,
            balance=from_cents(parent.balance),
            address=parent.address,
            phone=parent.phone,
            children=list(parent.children or []),
        )


class AdjustmentRequest(BaseModel):
    """Signed amount: positive credits, negative debits."""

    amount: Decimal = Field(..., decimal_places=2)
    reason: str = Field(REASON_ADJUSTMENT, min_length=1, max_length=64)
    order_ids: list[str] = Field(default_factory=list)
    allow_negative: bool = False

    @field_validator("amount")
    @classmethod
    def non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("amount must not be zero")
        return v


class TransactionResponse(BaseModel):
    id: str
    parent_id: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    order_ids: list[str]
    reason: str
    created_by: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, txn: ParentTransaction) -> "TransactionResponse":
        return cls(
            id=txn.id,
            parent_id=txn.parent_id,
            amount=from_cents(txn.amount),
            balance_before=from_cents(txn.balance_before),
            balance_after=from_cents(txn.balance_after),
            order_ids=list(txn.order_ids or []),
            reason=txn.reason,
            created_by=txn.created_by,
            created_at=txn.created_at,
        )


class AuditResponse(BaseModel):
    parent_id: str
    balance: Decimal
    ledger_total: Decimal
    transaction_count: int
    consistent: bool

    @classmethod
    def from_audit(cls, audit: LedgerAudit) -> "AuditResponse":
        return cls(
            parent_id=audit.parent_id,
            balance=from_cents(audit.balance),
            ledger_total=from_cents(audit.ledger_total),
            transaction_count=audit.transaction_count,
            consistent=audit.consistent,
        )


# ── Top-ups ───────────────────────────────────────────────────

class TopupCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2, examples=["500.00"])
    payment_method: PaymentMethod = PaymentMethod.CASH
    transaction_reference: str | None = Field(None, max_length=128)
    notes: str | None = Field(None, max_length=500)


class TopupApprove(BaseModel):
    admin_notes: str | None = Field(None, max_length=500)


class TopupDecline(BaseModel):
    reason: str = Field(..., max_length=500)


class TopupResponse(BaseModel):
    id: str
    parent_id: str
    amount: Decimal
    status: TopupStatus
    payment_method: PaymentMethod
    transaction_reference: str | None
    notes: str | None
    admin_notes: str | None
    processed_by: str | None
    requested_at: datetime
    processed_at: datetime | None

    @classmethod
    def from_model(cls, topup: Topup) -> "TopupResponse":
        return cls(
            id=topup.id,
            parent_id=topup.parent_id,
            amount=from_cents(topup.amount),
            status=topup.status,
            payment_method=topup.payment_method,
            transaction_reference=topup.transaction_reference,
            notes=topup.notes,
            admin_notes=topup.admin_notes,
            processed_by=topup.processed_by,
            requested_at=topup.requested_at,
            processed_at=topup.processed_at,
        )


class TopupStatisticsResponse(BaseModel):
    total_requests: int
    by_status: dict[str, int]
    total_amount: Decimal
    approved_amount: Decimal
    pending_amount: Decimal

    @classmethod
    def from_stats(cls, stats: dict) -> "TopupStatisticsResponse":
        return cls(
            total_requests=stats["total_requests"],
            by_status=stats["by_status"],
            total_amount=from_cents(stats["total_amount"]),
            approved_amount=from_cents(stats["approved_amount"]),
            pending_amount=from_cents(stats["pending_amount"]),
        )
