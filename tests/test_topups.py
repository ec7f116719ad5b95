"""
Top-up approval tests
"""
import asyncio

import pytest

from canteen.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from canteen.db import topup_ops, wallet_ops
from canteen.models.wallet import PaymentMethod, Topup, TopupStatus


@pytest.mark.asyncio
async def test_approve_credits_wallet_and_completes(db, parent):
    topup = await topup_ops.request_topup(
        db, parent.user_id, 2500, payment_method=PaymentMethod.BANK_TRANSFER, transaction_reference="TRX-881",
    )
    assert topup.status == TopupStatus.PENDING
    assert await wallet_ops.get_balance(db, parent.user_id) == 10000

    approved = await topup_ops.approve_topup(db, topup.id, "admin-001", admin_notes="Receipt checked")

    assert approved.status == TopupStatus.COMPLETED
    assert approved.processed_by == "admin-001"
    assert approved.processed_at is not None
    assert approved.admin_notes == "Receipt checked"
    assert await wallet_ops.get_balance(db, parent.user_id) == 12500

    credit = (await wallet_ops.list_transactions(db, parent.user_id, limit=1))[0]
    assert (credit.amount, credit.balance_before, credit.balance_after) == (2500, 10000, 12500)
    assert credit.reason == wallet_ops.REASON_TOPUP
    assert credit.created_by == "admin-001"


@pytest.mark.asyncio
async def test_second_approval_is_rejected(db, parent):
    topup = await topup_ops.request_topup(db, parent.user_id, 1000)
    await topup_ops.approve_topup(db, topup.id, "admin-001")

    with pytest.raises(InvalidTransitionError):
        await topup_ops.approve_topup(db, topup.id, "admin-002")
    assert await wallet_ops.get_balance(db, parent.user_id) == 11000


@pytest.mark.asyncio
async def test_racing_approvals_credit_once(session_factory, parent):
    async with session_factory() as session:
        topup = await topup_ops.request_topup(session, parent.user_id, 1000)

    async def approve(admin_id):
        async with session_factory() as session:
            return await topup_ops.approve_topup(session, topup.id, admin_id)

    results = await asyncio.gather(approve("admin-001"), approve("admin-002"), return_exceptions=True)

    assert sum(isinstance(r, Topup) for r in results) == 1
    assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
    async with session_factory() as session:
        assert await wallet_ops.get_balance(session, parent.user_id) == 11000
        assert (await wallet_ops.audit_ledger(session, parent.user_id)).consistent


@pytest.mark.asyncio
async def test_decline_needs_reason_and_leaves_balance(db, parent):
    topup = await topup_ops.request_topup(db, parent.user_id, 1000)

    with pytest.raises(ValidationError):
        await topup_ops.decline_topup(db, topup.id, "admin-001", "   ")

    declined = await topup_ops.decline_topup(db, topup.id, "admin-001", "Reference not found")
    assert declined.status == TopupStatus.DECLINED
    assert declined.admin_notes == "Reference not found"
    assert await wallet_ops.get_balance(db, parent.user_id) == 10000

    with pytest.raises(InvalidTransitionError):
        await topup_ops.approve_topup(db, topup.id, "admin-001")


@pytest.mark.asyncio
async def test_request_validation(db, parent):
    with pytest.raises(ValidationError):
        await topup_ops.request_topup(db, parent.user_id, 0)
    with pytest.raises(NotFoundError):
        await topup_ops.request_topup(db, "nobody", 500)
    with pytest.raises(NotFoundError):
        await topup_ops.approve_topup(db, "missing", "admin-001")


@pytest.mark.asyncio
async def test_listing_and_statistics(db, parent):
    await wallet_ops.create_parent(db, "parent-002")
    done = await topup_ops.request_topup(db, parent.user_id, 1000)
    refused = await topup_ops.request_topup(db, parent.user_id, 700)
    await topup_ops.request_topup(db, "parent-002", 300)
    await topup_ops.approve_topup(db, done.id, "admin-001")
    await topup_ops.decline_topup(db, refused.id, "admin-001", "Duplicate")

    pending = await topup_ops.list_topups(db, status=TopupStatus.PENDING)
    assert [t.parent_id for t in pending] == ["parent-002"]
    assert len(await topup_ops.list_topups(db, parent_id=parent.user_id)) == 2

    stats = await topup_ops.topup_statistics(db)
    assert stats["total_requests"] == 3
    assert stats["by_status"] == {"pending": 1, "approved": 0, "declined": 1, "completed": 1}
    assert stats["total_amount"] == 2000
    assert stats["approved_amount"] == 1000
    assert stats["pending_amount"] == 300
