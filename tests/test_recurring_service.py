from datetime import date

import pytest
from sqlalchemy import select

from app.core.errors import InvalidInputError, NotFoundError
from app.models.recurring import RecurringPattern
from app.models.transaction import Transaction
from app.schemas.recurring import PatternCreate, PatternUpdate
from app.services.recurring import RecurringService
from tests.factories import add_transaction


@pytest.fixture
async def salary(db, categories):
    return [
        await add_transaction(db, date(2024, month, 28), "ACME LTD SALARY", credit=3500.0,
                              category=categories["Salary"])
        for month in (1, 2, 3, 4)
    ]


@pytest.fixture
async def netflix(db, categories):
    return [
        await add_transaction(db, date(2024, month, 3), "NETFLIX.COM", debit=10.99,
                              category=categories["Streaming"])
        for month in (1, 2, 3)
    ]


async def _linked(db, pattern_id):
    result = await db.execute(select(Transaction.id).where(Transaction.recurring_group_id == pattern_id))
    return sorted(result.scalars().all())


class TestDetect:
    async def test_monthly_salary(self, db, salary):
        [pattern] = await RecurringService.detect_recurring_patterns(db, 1)
        assert pattern.description_pattern == "ACME LTD SALARY"
        assert pattern.merchant_name == "Acme Ltd Salary"
        assert pattern.frequency == "monthly"
        assert pattern.typical_day == 28
        assert pattern.typical_amount == 3500.0
        assert pattern.occurrence_count == 4
        assert pattern.last_seen == date(2024, 4, 28)
        assert pattern.is_subscription is False
        assert await _linked(db, pattern.id) == sorted(t.id for t in salary)

    async def test_subscription_flag(self, db, netflix):
        [pattern] = await RecurringService.detect_recurring_patterns(db, 1)
        assert pattern.is_subscription is True
        assert pattern.merchant_name == "Netflix.com"

    async def test_rerun_updates_in_place(self, db, salary):
        [first] = await RecurringService.detect_recurring_patterns(db, 1)
        await add_transaction(db, date(2024, 5, 28), "ACME LTD SALARY", credit=3500.0)
        [second] = await RecurringService.detect_recurring_patterns(db, 1)

        assert second.id == first.id
        assert second.occurrence_count == 5
        assert second.last_seen == date(2024, 5, 28)
        result = await db.execute(select(RecurringPattern))
        assert len(result.scalars().all()) == 1

    async def test_deactivated_pattern_not_revived(self, db, salary):
        [pattern] = await RecurringService.detect_recurring_patterns(db, 1)
        await RecurringService.delete_pattern(db, pattern.id, 1)
        assert await RecurringService.detect_recurring_patterns(db, 1) == []

    async def test_transfers_and_other_accounts_excluded(self, db, categories):
        for month in (1, 2, 3):
            await add_transaction(db, date(2024, month, 1), "TO SAVINGS", debit=100.0, is_transfer=True)
            await add_transaction(db, date(2024, month, 5), "RENT", debit=800.0, account_id=2)
        assert await RecurringService.detect_recurring_patterns(db, 1, account_id=1) == []
        [rent] = await RecurringService.detect_recurring_patterns(db, 1, account_id=2)
        assert rent.description_pattern == "RENT"

    async def test_no_history(self, db, categories):
        assert await RecurringService.detect_recurring_patterns(db, 1) == []


async def test_regular_payments_buckets(db, categories):
    for freq, amount in [("weekly", 5.0), ("fortnightly", 20.0), ("quarterly", 90.0), ("yearly", 120.0), (None, 1.0)]:
        await RecurringService.create_pattern(db, 1, PatternCreate(
            description_pattern=f"PAY {freq}", frequency=freq, typical_amount=amount,
        ))

    result = await RecurringService.get_regular_payments(db, 1)

    assert [p.description_pattern for p in result.weekly] == ["PAY fortnightly", "PAY weekly"]
    assert [p.description_pattern for p in result.monthly] == ["PAY quarterly"]
    assert [p.description_pattern for p in result.annual] == ["PAY yearly"]


class TestManualLinks:
    async def test_mark_as_recurring(self, db, categories):
        pattern = await RecurringService.create_pattern(db, 1, PatternCreate(description_pattern="GYM"))
        a = await add_transaction(db, date(2024, 1, 2), "PUREGYM", debit=25.0)
        b = await add_transaction(db, date(2024, 2, 2), "PUREGYM", debit=25.0)

        changes = await RecurringService.mark_as_recurring(db, [a.id, b.id], pattern.id, 1)

        assert changes == 2
        refreshed = await RecurringService.get_pattern(db, pattern.id, 1)
        assert refreshed.occurrence_count == 2
        assert refreshed.last_seen == date(2024, 2, 2)
        listed = await RecurringService.get_pattern_transactions(db, pattern.id, 1)
        assert [t.id for t in listed] == [b.id, a.id]
        assert all(t.is_recurring for t in listed)

    async def test_mark_empty_list(self, db, categories):
        pattern = await RecurringService.create_pattern(db, 1, PatternCreate(description_pattern="GYM"))
        assert await RecurringService.mark_as_recurring(db, [], pattern.id, 1) == 0

    async def test_mark_unknown_pattern(self, db, categories):
        with pytest.raises(NotFoundError, match="Pattern not found"):
            await RecurringService.mark_as_recurring(db, [1], 999, 1)

    async def test_unlink(self, db, salary):
        [pattern] = await RecurringService.detect_recurring_patterns(db, 1)

        unlinked = await RecurringService.unlink_transaction(db, salary[0].id, 1)

        assert unlinked.is_recurring is False
        assert unlinked.recurring_group_id is None
        assert (await RecurringService.get_pattern(db, pattern.id, 1)).occurrence_count == 3

    async def test_create_with_links(self, db, netflix, categories):
        pattern = await RecurringService.create_pattern(db, 1, PatternCreate(
            description_pattern="NETFLIX.COM", frequency="monthly",
            category_id=categories["Streaming"].id, transaction_ids=[t.id for t in netflix],
        ))
        assert pattern.occurrence_count == 3
        assert pattern.last_seen == date(2024, 3, 3)

    async def test_relink_recounts_previous_pattern(self, db, categories):
        first = await RecurringService.create_pattern(db, 1, PatternCreate(description_pattern="GYM"))
        second = await RecurringService.create_pattern(db, 1, PatternCreate(description_pattern="PUREGYM"))
        a = await add_transaction(db, date(2024, 1, 2), "PUREGYM", debit=25.0)
        b = await add_transaction(db, date(2024, 2, 2), "PUREGYM", debit=25.0)
        await RecurringService.mark_as_recurring(db, [a.id, b.id], first.id, 1)

        await RecurringService.mark_as_recurring(db, [a.id, b.id], second.id, 1)

        assert (await RecurringService.get_pattern(db, first.id, 1)).occurrence_count == 0
        assert (await RecurringService.get_pattern(db, second.id, 1)).occurrence_count == 2
        assert await _linked(db, first.id) == []

    async def test_detection_recounts_manual_pattern(self, db, netflix, categories):
        manual = await RecurringService.create_pattern(db, 1, PatternCreate(
            description_pattern="STREAMING", transaction_ids=[t.id for t in netflix],
        ))
        assert manual.occurrence_count == 3

        [detected] = await RecurringService.detect_recurring_patterns(db, 1)

        assert detected.id != manual.id
        assert detected.occurrence_count == 3
        assert (await RecurringService.get_pattern(db, manual.id, 1)).occurrence_count == 0


class TestUpdateAndDelete:
    async def test_invalid_frequency(self, db, categories):
        pattern = await RecurringService.create_pattern(db, 1, PatternCreate(description_pattern="GYM"))
        with pytest.raises(InvalidInputError, match="Invalid frequency"):
            await RecurringService.update_pattern(db, pattern.id, 1, PatternUpdate(frequency="daily"))

    async def test_category_change_propagates(self, db, netflix, categories):
        [pattern] = await RecurringService.detect_recurring_patterns(db, 1)

        updated = await RecurringService.update_pattern(
            db, pattern.id, 1, PatternUpdate(category_id=categories["Other"].id, merchant_name="Netflix")
        )

        assert updated.category_id == categories["Other"].id
        assert updated.merchant_name == "Netflix"
        result = await db.execute(select(Transaction.category_id).where(Transaction.recurring_group_id == pattern.id))
        assert set(result.scalars().all()) == {categories["Other"].id}

    async def test_delete_unlinks(self, db, salary):
        [pattern] = await RecurringService.detect_recurring_patterns(db, 1)

        result = await RecurringService.delete_pattern(db, pattern.id, 1)

        assert result.transactions_unlinked == 4
        assert await _linked(db, pattern.id) == []
        assert await RecurringService.list_patterns(db, 1) == []
        assert len(await RecurringService.list_patterns(db, 1, include_inactive=True)) == 1

    async def test_other_users_pattern_not_found(self, db, salary):
        [pattern] = await RecurringService.detect_recurring_patterns(db, 1)
        with pytest.raises(NotFoundError):
            await RecurringService.get_pattern(db, pattern.id, 2)
