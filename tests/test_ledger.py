"""
Tests for the ledger engine

Covers the transaction log queries, balance reconciliation and tag
statistics. Persistence goes to a local store in a temp directory.
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ledgerbook.ledger import (
    AccountLedger,
    AccountNotFoundError,
    DuplicateAccountError,
    ProtectedTagError,
    TagAggregator,
    TagManager,
    TransactionLog,
    TransactionNotFoundError,
    attribute_transactions,
    compute_totals,
    recompute_tags,
    sort_tags,
)
from ledgerbook.models import (
    EPOCH,
    PRELOADED_TAGS,
    Account,
    AccountUpdate,
    TagStat,
    Transaction,
)
from ledgerbook.services.storage import (
    LedgerRepository,
    LocalFileBackend,
    PersistenceStore,
    StorageError,
)
from ledgerbook.validation import ValidationError


T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for deterministic update dates."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def expense(amount, account="A", when=T0, tags=(), id=None):
    data = dict(type="expense", amount=Decimal(str(amount)), account=account, date_time=when, tags=list(tags))
    if id:
        data["id"] = id
    return Transaction(**data)


def income(amount, account="A", when=T0, tags=()):
    return Transaction(type="income", amount=Decimal(str(amount)), account=account, date_time=when, tags=list(tags))


def transfer(amount, source="A", target="B", when=T0, tags=()):
    return Transaction(
        type="transfer",
        amount=Decimal(str(amount)),
        from_account=source,
        to_account=target,
        date_time=when,
        tags=list(tags),
    )


class ReadOnlyBackend(LocalFileBackend):
    """Local backend whose writes always fail."""

    async def set(self, key, value):
        raise StorageError(f"read-only: {key}")


@pytest.fixture
def repository(tmp_path):
    return LedgerRepository(PersistenceStore(LocalFileBackend(tmp_path)))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def log():
    return TransactionLog()


@pytest.fixture
def ledger(repository, log, clock):
    return AccountLedger(
        repository,
        log,
        accounts=[Account(name="A", balance=Decimal("1000")), Account(name="B", balance=Decimal("0"))],
        clock=clock,
    )


class TestTransactionLog:
    """Tests for the in-memory transaction log."""

    def test_append_puts_newest_first(self, log):
        first = log.append(expense(1))
        second = log.append(expense(2))
        assert log.all() == [second, first]
        assert len(log) == 2

    def test_query_window_excludes_start_includes_end(self, log):
        at_start = log.append(expense(1, when=T0))
        inside = log.append(expense(2, when=T0 + timedelta(hours=1)))
        at_end = log.append(expense(3, when=T0 + timedelta(hours=2)))
        log.append(expense(4, when=T0 + timedelta(hours=3)))

        window = list(log.query("A", T0, T0 + timedelta(hours=2)))

        assert at_start not in window
        assert inside in window
        assert at_end in window
        assert len(window) == 2

    def test_query_matches_transfer_sides(self, log):
        t = log.append(transfer(10, "A", "B"))
        log.append(expense(5, account="C"))
        start = T0 - timedelta(days=1)
        assert list(log.query("B", start, T0)) == [t]
        assert list(log.query("A", start, T0)) == [t]

    def test_filtered_view_is_restartable(self, log):
        log.append(expense(1, tags=["trip"]))
        view = log.with_tag("trip")
        assert len(list(view)) == 1
        assert len(list(view)) == 1

        log.append(expense(2, tags=["trip"]))
        assert len(list(view)) == 2

    def test_with_tag_all_matches_everything(self, log):
        log.append(expense(1, tags=["trip"]))
        log.append(expense(2))
        assert len(list(log.with_tag("all"))) == 2
        assert len(list(log.with_tag(None))) == 2

    def test_filters_compose(self, log):
        log.append(expense(1, tags=["trip"], account="A"))
        log.append(expense(2, tags=["trip"], account="B"))
        view = log.with_tag("trip").filter(lambda t: t.account == "B")
        assert [t.amount for t in view] == [Decimal("2")]

    def test_in_date_range_covers_whole_days(self, log):
        day = date(2024, 3, 1)
        early = log.append(expense(1, when=datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)))
        late = log.append(expense(2, when=datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc)))
        log.append(expense(3, when=datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc)))

        assert set(t.id for t in log.in_date_range(day, day)) == {early.id, late.id}
        assert len(list(log.in_date_range(start_day=day))) == 3
        assert len(list(log.in_date_range(end_day=day))) == 2

    def test_update_keeps_id_and_position(self, log):
        older = log.append(expense(1, id="old"))
        log.append(expense(2))
        updated = log.update("old", {"amount": "9", "dateTime": T0 + timedelta(days=1)})
        assert updated.id == "old"
        assert updated.amount == Decimal("9")
        assert log.all()[1] is updated
        assert older.amount == Decimal("1")

    def test_merge_does_not_touch_log(self, log):
        log.append(expense(1, id="x"))
        merged = log.merge("x", {"amount": 5})
        assert merged.amount == Decimal("5")
        assert log.get("x").amount == Decimal("1")

    def test_update_unknown_id_raises(self, log):
        with pytest.raises(TransactionNotFoundError):
            log.update("missing", {"amount": 1})

    def test_update_revalidates(self, log):
        log.append(expense(1, id="x"))
        with pytest.raises(ValidationError):
            log.update("x", {"amount": "-1"})
        assert log.get("x").amount == Decimal("1")

    def test_remove_unknown_id_is_noop(self, log):
        log.append(expense(1))
        assert log.remove("missing") is None
        assert len(log) == 1

    def test_append_rejects_duplicate_id(self, log):
        log.append(expense(1, id="x"))
        with pytest.raises(ValueError):
            log.append(expense(2, id="x"))
        assert len(log) == 1

    def test_tag_renamed_dedupes_without_touching_log(self, log):
        log.append(expense(1, tags=["food", "eats"], id="x"))
        changed = log.tag_renamed("eats", "food")
        assert [t.id for t in changed] == ["x"]
        assert changed[0].tags == ["food"]
        assert log.get("x").tags == ["food", "eats"]

    def test_tag_stripped_then_replace(self, log):
        log.append(expense(1, tags=["food", "trip"], id="x"))
        log.append(expense(1, tags=["trip"], id="y"))
        changed = log.tag_stripped("food")
        assert [t.id for t in changed] == ["x"]
        assert log.get("x").tags == ["food", "trip"]

        log.replace(changed)
        assert log.get("x").tags == ["trip"]
        assert [t.id for t in log] == ["y", "x"]


class TestAttribution:
    """Tests for splitting a window into income and expense."""

    def test_transfer_direction(self):
        window = [transfer(500, "A", "B"), income(100, account="A"), expense(40, account="A")]
        assert attribute_transactions("A", window) == (Decimal("100"), Decimal("540"))
        assert attribute_transactions("B", [window[0]]) == (Decimal("500"), Decimal("0"))


class TestReconciliation:
    """Tests for AccountLedger.reconcile."""

    @pytest.mark.asyncio
    async def test_first_update_explains_expense(self, ledger, log):
        log.append(expense(200, when=T0 - timedelta(hours=1)))

        update = await ledger.reconcile("A", "700")

        assert update.input_income == Decimal("0")
        assert update.input_expense == Decimal("200")
        assert update.balance_based_expense == Decimal("300")
        assert update.unexplained_expense == Decimal("100")
        assert ledger.get("A").balance == Decimal("700")

    @pytest.mark.asyncio
    async def test_second_update_uses_new_window(self, ledger, log, clock):
        log.append(expense(200, when=T0 - timedelta(hours=1)))
        await ledger.reconcile("A", 700)

        clock.advance(days=1)
        update = await ledger.reconcile("A", 650)

        assert update.input_income == Decimal("0")
        assert update.input_expense == Decimal("0")
        assert update.balance_based_expense == Decimal("50")

    @pytest.mark.asyncio
    async def test_transfer_counts_on_both_sides(self, ledger, log):
        log.append(transfer(500, "A", "B", when=T0 - timedelta(minutes=5)))

        sent = await ledger.reconcile("A", 500)
        received = await ledger.reconcile("B", 500)

        assert (sent.input_income, sent.input_expense, sent.balance_based_expense) == (
            Decimal("0"), Decimal("500"), Decimal("500"),
        )
        assert received.input_income == Decimal("500")
        assert received.balance_based_expense == Decimal("0")

    @pytest.mark.asyncio
    async def test_negative_residual_is_kept(self, ledger):
        update = await ledger.reconcile("A", 1200)
        assert update.balance_based_expense == Decimal("-200")

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, ledger, clock):
        for balance in (900, 800, 700):
            await ledger.reconcile("A", balance)
            clock.advance(hours=1)

        updates = ledger.get("A").updates
        assert [u.balance for u in updates] == [Decimal("700"), Decimal("800"), Decimal("900")]
        assert all(a.date > b.date for a, b in zip(updates, updates[1:]))

    @pytest.mark.asyncio
    async def test_clock_step_back_keeps_order(self, ledger, clock):
        await ledger.reconcile("A", 900)
        clock.now = T0 - timedelta(hours=1)
        await ledger.reconcile("A", 800)

        first, second = ledger.get("A").updates[1], ledger.get("A").updates[0]
        assert second.date > first.date

    @pytest.mark.asyncio
    async def test_transaction_at_previous_update_not_counted_twice(self, ledger, log, clock):
        log.append(expense(100, when=T0))
        first = await ledger.reconcile("A", 900)
        clock.advance(hours=1)
        second = await ledger.reconcile("A", 900)

        assert first.input_expense == Decimal("100")
        assert second.input_expense == Decimal("0")

    @pytest.mark.asyncio
    async def test_invalid_balance_changes_nothing(self, ledger, repository):
        with pytest.raises(ValidationError):
            await ledger.reconcile("A", "12abc")

        assert ledger.get("A").balance == Decimal("1000")
        assert ledger.get("A").updates == []
        assert await repository.get_account("A") is None

    @pytest.mark.asyncio
    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            await ledger.reconcile("Nope", 10)

    @pytest.mark.asyncio
    async def test_update_is_persisted(self, ledger, repository):
        await ledger.reconcile("A", 700)
        stored = await repository.get_account("A")
        assert stored.balance == Decimal("700")
        assert len(stored.updates) == 1

    @pytest.mark.asyncio
    async def test_add_account_rejects_duplicate(self, ledger):
        await ledger.add_account(Account(name="C"))
        with pytest.raises(DuplicateAccountError):
            await ledger.add_account(Account(name="C"))
        assert ledger.names() == ["A", "B", "C"]


class TestTotals:
    """Tests for cross-account totals."""

    def test_totals_use_latest_update_only(self):
        old = AccountUpdate(date=EPOCH, balance=Decimal("1"), input_expense=Decimal("999"))
        new = AccountUpdate(
            date=T0,
            balance=Decimal("700"),
            input_income=Decimal("10"),
            input_expense=Decimal("200"),
            balance_based_expense=Decimal("300"),
        )
        accounts = [
            Account(name="A", balance=Decimal("700"), updates=[new, old]),
            Account(name="B", balance=Decimal("-50")),
        ]

        totals = compute_totals(accounts)

        assert totals.balance == Decimal("650")
        assert totals.input_income == Decimal("10")
        assert totals.input_expense == Decimal("200")
        assert totals.balance_based_expense == Decimal("300")


class TestTagStatistics:
    """Tests for recompute_tags and sort_tags."""

    def test_counts_and_totals(self):
        later = T0 + timedelta(days=2)
        transactions = [
            income(1000, tags=["house"], when=later),
            expense(300, tags=["house", "trip"], when=T0),
            transfer(50, tags=["trip"], when=T0 + timedelta(days=1)),
        ]

        tags = {t.name: t for t in recompute_tags(transactions, now=T0)}

        assert tags["house"].transaction_count == 2
        assert tags["house"].total_amount == Decimal("700")
        assert tags["house"].last_used == later
        assert tags["trip"].transaction_count == 2
        assert tags["trip"].total_amount == Decimal("-300")

    def test_new_tag_created_at_first_use(self):
        first = T0 - timedelta(days=3)
        tags = {t.name: t for t in recompute_tags(
            [expense(1, tags=["food"], when=T0), expense(1, tags=["food"], when=first)],
            now=T0,
        )}
        assert tags["food"].created_at == first

    def test_preloaded_tags_always_present(self):
        names = [t.name for t in recompute_tags([], now=T0)]
        assert set(PRELOADED_TAGS) <= set(names)

    def test_unused_tag_is_zeroed(self):
        stale = TagStat(name="food", created_at=T0, transaction_count=5, total_amount=Decimal("9"))
        tags = {t.name: t for t in recompute_tags([], [stale], now=T0)}
        assert tags["food"].transaction_count == 0
        assert tags["food"].total_amount == Decimal("0")
        assert tags["food"].last_used is None
        assert tags["food"].created_at == T0

    def test_recompute_is_idempotent(self):
        transactions = [expense(10, tags=["trip"]), income(5, tags=["food"])]
        once = recompute_tags(transactions, now=T0)
        twice = recompute_tags(transactions, once, now=T0 + timedelta(days=1))
        assert once == twice

    def test_sort_options(self):
        tags = [
            TagStat(name="b", created_at=T0, transaction_count=1, total_amount=Decimal("5")),
            TagStat(name="a", created_at=T0 + timedelta(days=1), transaction_count=3, total_amount=Decimal("-5")),
            TagStat(name="C", created_at=T0 - timedelta(days=1), last_used=T0),
        ]
        assert [t.name for t in sort_tags(tags, "lexical")] == ["a", "b", "C"]
        assert [t.name for t in sort_tags(tags, "lexical", "desc")] == ["C", "b", "a"]
        assert [t.name for t in sort_tags(tags, "time")] == ["a", "b", "C"]
        assert [t.name for t in sort_tags(tags, "transactionCount")] == ["a", "b", "C"]
        assert [t.name for t in sort_tags(tags, "totalAmount")] == ["b", "C", "a"]
        assert sort_tags(tags, "recentlyUsed")[0].name == "C"

    def test_unknown_sort_option(self):
        with pytest.raises(ValueError):
            sort_tags([], "popularity")


class TestTagManager:
    """Tests for create, rename and delete."""

    @pytest.fixture
    def manager(self, repository, log):
        return TagManager(TagAggregator(), log, repository)

    @pytest.mark.asyncio
    async def test_create_and_persist(self, manager, repository):
        tag = await manager.create("  food ")
        assert tag.name == "food"
        stored = [t.name for t in await repository.get_all_tags()]
        assert "food" in stored
        assert set(PRELOADED_TAGS) <= set(stored)

    @pytest.mark.asyncio
    async def test_create_existing_is_noop(self, manager):
        first = await manager.create("food")
        again = await manager.create("food")
        assert again == first
        assert [t.name for t in manager.tags].count("food") == 1

    @pytest.mark.asyncio
    async def test_preloaded_tags_are_protected(self, manager):
        with pytest.raises(ProtectedTagError):
            await manager.delete("trip")
        with pytest.raises(ProtectedTagError):
            await manager.rename("petrol", "fuel")
        assert set(PRELOADED_TAGS) <= {t.name for t in manager.tags}

    @pytest.mark.asyncio
    async def test_delete_strips_transactions(self, manager, log, repository):
        log.append(expense(10, tags=["food", "trip"], id="x"))
        await repository.save_transaction(log.get("x"))
        await manager.refresh()

        await manager.delete("food")

        assert "food" not in [t.name for t in manager.tags]
        assert log.get("x").tags == ["trip"]
        stored = await repository.get_all_transactions()
        assert stored[0].tags == ["trip"]

    @pytest.mark.asyncio
    async def test_rename_moves_statistics(self, manager, log):
        log.append(expense(10, tags=["eats"], id="x"))
        await manager.refresh()

        tags = {t.name: t for t in await manager.rename("eats", "food")}

        assert "eats" not in tags
        assert tags["food"].transaction_count == 1
        assert log.get("x").tags == ["food"]

    @pytest.mark.asyncio
    async def test_failed_delete_leaves_log_unchanged(self, log, tmp_path):
        manager = TagManager(TagAggregator(), log, LedgerRepository(PersistenceStore(ReadOnlyBackend(tmp_path))))
        log.append(expense(10, tags=["food", "trip"], id="x"))

        with pytest.raises(StorageError):
            await manager.delete("food")

        assert log.get("x").tags == ["food", "trip"]

    @pytest.mark.asyncio
    async def test_failed_rename_leaves_log_unchanged(self, log, tmp_path):
        manager = TagManager(TagAggregator(), log, LedgerRepository(PersistenceStore(ReadOnlyBackend(tmp_path))))
        log.append(expense(10, tags=["eats"], id="x"))

        with pytest.raises(StorageError):
            await manager.rename("eats", "food")

        assert log.get("x").tags == ["eats"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
