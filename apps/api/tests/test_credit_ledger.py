import pytest
from fastapi import HTTPException
from sqlalchemy.future import select

from models.credit_transaction import (
    ADMIN_ADJUSTMENT,
    BONUS,
    BULK_DESCRIPTION,
    IMAGE_DESCRIPTION,
    PURCHASE,
    CreditTransaction,
)
from services.credits import (
    InsufficientCreditsError,
    add_credits,
    adjust_credits,
    deduct_credits,
    get_credit_balance,
    get_credit_summary,
    list_transactions,
    reconcile_balance,
    set_credit_balance,
)


async def _ledger(session_maker, user_id):
    async with session_maker() as db:
        result = await db.execute(
            select(CreditTransaction).where(CreditTransaction.user_id == user_id)
        )
        return result.scalars().all()


@pytest.mark.asyncio
async def test_balance_matches_ledger_after_mixed_operations(session_maker, create_user):
    user_id = await create_user(credits=100)

    async with session_maker() as db:
        await deduct_credits(user_id, db, amount=1, description="Image description for cat.png")
        await deduct_credits(user_id, db, amount=3, transaction_type=BULK_DESCRIPTION)
        await add_credits(user_id, db, amount=50, transaction_type=PURCHASE)
        await adjust_credits(user_id, db, delta=-6)

    async with session_maker() as db:
        state = await reconcile_balance(user_id, db)

    assert state["balance"] == 140
    assert state["ledger_total"] == 140
    assert state["consistent"] is True

    entries = await _ledger(session_maker, user_id)
    assert sorted(entry.type for entry in entries) == sorted(
        [BONUS, IMAGE_DESCRIPTION, BULK_DESCRIPTION, PURCHASE, ADMIN_ADJUSTMENT]
    )
    assert sum(entry.amount for entry in entries) == 140


@pytest.mark.asyncio
async def test_deduct_beyond_balance_raises_402_and_changes_nothing(session_maker, create_user):
    user_id = await create_user(credits=2)

    async with session_maker() as db:
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await deduct_credits(user_id, db, amount=3)

    assert exc_info.value.status_code == 402
    assert exc_info.value.required == 3
    assert exc_info.value.available == 2
    assert exc_info.value.detail["error"] == "Insufficient credits"

    async with session_maker() as db:
        assert await get_credit_balance(user_id, db) == 2
    assert len(await _ledger(session_maker, user_id)) == 1


@pytest.mark.asyncio
async def test_uncommitted_debit_is_discarded_with_caller_rollback(session_maker, create_user):
    user_id = await create_user(credits=5)

    async with session_maker() as db:
        charge = await deduct_credits(user_id, db, amount=2, commit=False)
        assert charge == {"charged": 2, "balance_after": 3}
        await db.rollback()

    async with session_maker() as db:
        state = await reconcile_balance(user_id, db)
    assert state["balance"] == 5
    assert state["consistent"] is True


@pytest.mark.asyncio
async def test_non_positive_amounts_are_rejected(session_maker, create_user):
    user_id = await create_user(credits=5)

    async with session_maker() as db:
        with pytest.raises(HTTPException) as deduct_error:
            await deduct_credits(user_id, db, amount=0)
        with pytest.raises(HTTPException) as add_error:
            await add_credits(user_id, db, amount=-1, transaction_type=BONUS)
        with pytest.raises(HTTPException) as adjust_error:
            await adjust_credits(user_id, db, delta=0)

    assert deduct_error.value.status_code == 422
    assert add_error.value.status_code == 422
    assert adjust_error.value.status_code == 422


@pytest.mark.asyncio
async def test_negative_adjustment_cannot_overdraw(session_maker, create_user):
    user_id = await create_user(credits=4)

    async with session_maker() as db:
        with pytest.raises(InsufficientCreditsError):
            await adjust_credits(user_id, db, delta=-5)
        result = await adjust_credits(user_id, db, delta=-4, description="Chargeback")

    assert result == {"delta": -4, "balance_after": 0}


@pytest.mark.asyncio
async def test_set_credit_balance_records_the_difference(session_maker, create_user):
    user_id = await create_user(credits=10)

    async with session_maker() as db:
        raised = await set_credit_balance(user_id, db, new_balance=25)
    async with session_maker() as db:
        lowered = await set_credit_balance(user_id, db, new_balance=7)
    async with session_maker() as db:
        unchanged = await set_credit_balance(user_id, db, new_balance=7)

    assert raised == {"delta": 15, "balance_after": 25}
    assert lowered == {"delta": -18, "balance_after": 7}
    assert unchanged == {"delta": 0, "balance_after": 7}

    adjustments = [entry.amount for entry in await _ledger(session_maker, user_id) if entry.type == ADMIN_ADJUSTMENT]
    assert sorted(adjustments) == [-18, 15]


@pytest.mark.asyncio
async def test_unknown_user_is_404(session_maker):
    async with session_maker() as db:
        with pytest.raises(HTTPException) as exc_info:
            await add_credits("missing-user", db, amount=5, transaction_type=BONUS)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_summary_and_transaction_listing(session_maker, create_user):
    user_id = await create_user("reader@example.com", credits=20, name="Reader")
    other_id = await create_user("other@example.com", credits=5)

    async with session_maker() as db:
        await deduct_credits(user_id, db, amount=1, description="Image description for a.png")

    async with session_maker() as db:
        summary = await get_credit_summary(user_id, db)
        everything = await list_transactions(db)
        mine = await list_transactions(db, user_id=user_id)

    assert summary["credits"] == 19
    assert summary["email"] == "reader@example.com"
    assert summary["costs"] == {"image_description": 1}
    assert {entry["type"] for entry in summary["recent_entries"]} == {BONUS, IMAGE_DESCRIPTION}

    assert len(everything) == 3
    assert {entry["user"]["id"] for entry in everything} == {user_id, other_id}
    assert len(mine) == 2
    assert all(entry["user_id"] == user_id for entry in mine)
