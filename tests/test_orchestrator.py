"""
Integration tests for LedgerOrchestrator

End-to-end flows over a local store in a temp directory. The remote KV
store is never configured here.
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ledgerbook.backup import BackupScheduler
from ledgerbook.config import (
    AppSettings,
    BackupSettings,
    KVSettings,
    get_settings,
    validate_all_settings,
)
from ledgerbook.ledger import DuplicateAccountError, ProtectedTagError
from ledgerbook.models import PRELOADED_TAGS, AccountType
from ledgerbook.orchestrator import LedgerOrchestrator, create_app_components
from ledgerbook.services.storage import (
    LedgerRepository,
    LocalFileBackend,
    PersistenceStore,
)
from ledgerbook.validation import ValidationError


T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository(tmp_path):
    return LedgerRepository(PersistenceStore(LocalFileBackend(tmp_path)))


async def make_orchestrator(repository, clock, **kwargs) -> LedgerOrchestrator:
    orchestrator = await LedgerOrchestrator.load(repository, seed_defaults=False, clock=clock, **kwargs)
    await orchestrator.add_account("Axis Bank", AccountType.SAVINGS, "1000")
    await orchestrator.add_account("ICICI Credit Card", AccountType.CREDIT_CARD, "-4000")
    return orchestrator


def expense_form(amount="200", account="Axis Bank", tags=("petrol",), when=T0 - timedelta(hours=1)):
    return {
        "type": "expense",
        "amount": amount,
        "account": account,
        "tags": list(tags),
        "description": "Fuel",
        "dateTime": when.isoformat(),
    }


class TestAccounts:
    """Tests for account flows."""

    @pytest.mark.asyncio
    async def test_add_account_persists(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        stored = await repository.get_account("ICICI Credit Card")
        assert stored.balance == Decimal("-4000")
        assert stored.type == AccountType.CREDIT_CARD
        assert [a.name for a in orchestrator.accounts] == ["Axis Bank", "ICICI Credit Card"]

    @pytest.mark.asyncio
    async def test_add_account_rejects_bad_input(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        with pytest.raises(ValidationError):
            await orchestrator.add_account("Cash", AccountType.SAVINGS, "lots")
        with pytest.raises(ValidationError):
            await orchestrator.add_account("   ", AccountType.SAVINGS, "0")
        with pytest.raises(DuplicateAccountError):
            await orchestrator.add_account("Axis Bank", AccountType.SAVINGS, "0")

    @pytest.mark.asyncio
    async def test_report_balance_end_to_end(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        await orchestrator.add_transaction(expense_form())

        update = await orchestrator.report_balance("Axis Bank", "700")

        assert (update.input_income, update.input_expense, update.balance_based_expense) == (
            Decimal("0"), Decimal("200"), Decimal("300"),
        )
        totals = orchestrator.totals()
        assert totals.balance == Decimal("-3300")
        assert totals.balance_based_expense == Decimal("300")


class TestTransactions:
    """Tests for add, update, delete and filtering."""

    @pytest.mark.asyncio
    async def test_add_transaction_updates_tags(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)

        t = await orchestrator.add_transaction(expense_form(tags=["petrol", "weekend"]))

        assert orchestrator.transactions.all()[0] is t
        tags = {tag.name: tag for tag in orchestrator.sorted_tags()}
        assert tags["petrol"].transaction_count == 1
        assert tags["petrol"].total_amount == Decimal("-200")
        assert tags["weekend"].transaction_count == 1
        assert [s.id for s in await repository.get_all_transactions()] == [t.id]
        assert "weekend" in [s.name for s in await repository.get_all_tags()]

    @pytest.mark.asyncio
    async def test_unknown_account_rejected_without_changes(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.add_transaction(expense_form(account="Nowhere", tags=["new"]))

        assert exc_info.value.field == "account"
        assert len(orchestrator.transactions) == 0
        assert await repository.get_all_transactions() == []
        assert "new" not in [tag.name for tag in orchestrator.sorted_tags()]

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected_without_changes(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        first = await orchestrator.add_transaction({**expense_form(), "id": "dup"})

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.add_transaction({**expense_form(amount="999"), "id": "dup"})

        assert exc_info.value.field == "id"
        assert orchestrator.transactions.all() == [first]
        stored = await repository.get_all_transactions()
        assert [(t.id, t.amount) for t in stored] == [("dup", Decimal("200"))]

    @pytest.mark.asyncio
    async def test_malformed_amount_rejected(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        with pytest.raises(ValidationError):
            await orchestrator.add_transaction(expense_form(amount="12abc"))
        assert len(orchestrator.transactions) == 0

    @pytest.mark.asyncio
    async def test_update_transaction(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        t = await orchestrator.add_transaction(expense_form())

        updated = await orchestrator.update_transaction(t.id, {"amount": "250", "tags": ["trip"]})

        assert updated.id == t.id
        assert orchestrator.transactions.get(t.id).amount == Decimal("250")
        tags = {tag.name: tag for tag in orchestrator.sorted_tags()}
        assert tags["petrol"].transaction_count == 0
        assert tags["trip"].total_amount == Decimal("-250")
        stored = await repository.get_all_transactions()
        assert stored[0].amount == Decimal("250")

    @pytest.mark.asyncio
    async def test_invalid_update_changes_nothing(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        t = await orchestrator.add_transaction(expense_form())

        with pytest.raises(ValidationError):
            await orchestrator.update_transaction(t.id, {"account": "Nowhere"})

        assert orchestrator.transactions.get(t.id).account == "Axis Bank"
        assert (await repository.get_all_transactions())[0].account == "Axis Bank"

    @pytest.mark.asyncio
    async def test_delete_transaction(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        t = await orchestrator.add_transaction(expense_form())

        assert await orchestrator.delete_transaction("missing") is False
        assert await orchestrator.delete_transaction(t.id) is True

        assert len(orchestrator.transactions) == 0
        assert await repository.get_all_transactions() == []
        tags = {tag.name: tag for tag in orchestrator.sorted_tags()}
        assert tags["petrol"].transaction_count == 0

    @pytest.mark.asyncio
    async def test_transfer_between_accounts(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        await orchestrator.add_transaction({
            "type": "transfer",
            "amount": "500",
            "fromAccount": "Axis Bank",
            "toAccount": "ICICI Credit Card",
            "dateTime": (T0 - timedelta(minutes=1)).isoformat(),
        })

        paid = await orchestrator.report_balance("Axis Bank", 500)
        card = await orchestrator.report_balance("ICICI Credit Card", -3500)

        assert paid.input_expense == Decimal("500")
        assert paid.balance_based_expense == Decimal("500")
        assert card.input_income == Decimal("500")
        assert card.balance_based_expense == Decimal("0")

    @pytest.mark.asyncio
    async def test_filter_by_date_and_tag(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        march = await orchestrator.add_transaction(expense_form(tags=["petrol"], when=T0))
        await orchestrator.add_transaction(expense_form(tags=["trip"], when=T0))
        await orchestrator.add_transaction(expense_form(tags=["petrol"], when=T0 - timedelta(days=40)))

        day = T0.date()
        assert len(orchestrator.filter_transactions(day, day)) == 2
        assert orchestrator.filter_transactions(day, day, "petrol") == [march]
        assert len(orchestrator.filter_transactions(tag="all")) == 3
        assert len(orchestrator.filter_transactions(start_day=date(2024, 1, 1), tag="petrol")) == 2


class TestTags:
    """Tests for tag flows through the orchestrator."""

    @pytest.mark.asyncio
    async def test_preloaded_tags_present_on_empty_ledger(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        assert set(PRELOADED_TAGS) <= {tag.name for tag in orchestrator.sorted_tags()}

    @pytest.mark.asyncio
    async def test_protected_tags(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        with pytest.raises(ProtectedTagError):
            await orchestrator.delete_tag("house")
        with pytest.raises(ProtectedTagError):
            await orchestrator.rename_tag("train", "rail")

    @pytest.mark.asyncio
    async def test_delete_tag_strips_transactions(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        t = await orchestrator.add_transaction(expense_form(tags=["petrol", "weekend"]))

        await orchestrator.delete_tag("weekend")

        assert orchestrator.transactions.get(t.id).tags == ["petrol"]
        assert "weekend" not in [tag.name for tag in orchestrator.sorted_tags()]
        assert (await repository.get_all_transactions())[0].tags == ["petrol"]

    @pytest.mark.asyncio
    async def test_create_and_rename_tag(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        await orchestrator.create_tag("groceries")
        await orchestrator.add_transaction(expense_form(tags=["groceries"]))

        await orchestrator.rename_tag("groceries", "food")

        names = [tag.name for tag in orchestrator.sorted_tags("lexical")]
        assert "food" in names and "groceries" not in names
        assert orchestrator.transactions.all()[0].tags == ["food"]


class TestLifecycle:
    """Tests for reload, export, backup and shutdown."""

    @pytest.mark.asyncio
    async def test_state_survives_reload(self, repository, clock, tmp_path):
        orchestrator = await make_orchestrator(repository, clock)
        await orchestrator.add_transaction(expense_form(tags=["weekend"]))
        await orchestrator.report_balance("Axis Bank", 700)

        reloaded = await LedgerOrchestrator.load(
            LedgerRepository(PersistenceStore(LocalFileBackend(tmp_path))),
            clock=clock,
        )

        assert reloaded.ledger.get("Axis Bank").balance == Decimal("700")
        assert len(reloaded.ledger.get("Axis Bank").updates) == 1
        assert len(reloaded.transactions) == 1
        assert "weekend" in [tag.name for tag in reloaded.sorted_tags()]

    @pytest.mark.asyncio
    async def test_unreadable_tags_not_overwritten_on_load(self, repository, clock, tmp_path):
        orchestrator = await make_orchestrator(repository, clock)
        await orchestrator.add_transaction(expense_form(tags=["weekend"]))
        (tmp_path / "tags.json").write_text('[{"name": ""}]')

        reloaded = await LedgerOrchestrator.load(repository, clock=clock)

        tags = {tag.name: tag for tag in reloaded.sorted_tags()}
        assert set(PRELOADED_TAGS) <= set(tags)
        assert tags["weekend"].transaction_count == 1
        assert (tmp_path / "tags.json").read_text() == '[{"name": ""}]'

    @pytest.mark.asyncio
    async def test_exports(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        await orchestrator.add_transaction(expense_form())

        accounts_csv = orchestrator.export_accounts_csv()
        transactions_csv = orchestrator.export_transactions_csv()

        assert accounts_csv.splitlines()[-1].startswith("TOTAL,")
        assert len(transactions_csv.splitlines()) == 2

    @pytest.mark.asyncio
    async def test_backup_now(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock, backup=BackupScheduler(repository.store))

        snapshot = await orchestrator.backup_now()

        keys = [entry.key for entry in snapshot.data]
        assert "account:Axis Bank" in keys
        assert "tags" in keys

    @pytest.mark.asyncio
    async def test_backup_now_without_scheduler(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        assert await orchestrator.backup_now() is None

    @pytest.mark.asyncio
    async def test_clear_all(self, repository, clock):
        orchestrator = await make_orchestrator(repository, clock)
        await orchestrator.clear_all()
        assert await repository.store.list_keys() == []

    @pytest.mark.asyncio
    async def test_create_app_components(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KV_REST_API_URL", "")
        monkeypatch.setenv("KV_REST_API_TOKEN", "")
        monkeypatch.setenv("LOCAL_STORAGE_DIRECTORY", str(tmp_path / "store"))
        monkeypatch.setenv("BACKUP_INTERVAL_SECONDS", "3600")
        get_settings.cache_clear()
        try:
            orchestrator = await create_app_components()
            assert orchestrator.repository.store.name == "local"
            assert len(orchestrator.accounts) == 3
            assert orchestrator.backup.running
            await orchestrator.shutdown()
            assert not orchestrator.backup.running
        finally:
            get_settings.cache_clear()


class TestSettings:
    """Tests for configuration loading."""

    def test_blank_kv_values_are_unconfigured(self):
        settings = KVSettings(rest_api_url="  ", rest_api_token="token")
        assert settings.rest_api_url is None
        assert not settings.is_configured

    def test_kv_configured(self):
        settings = KVSettings(rest_api_url="https://kv.example.com", rest_api_token="token")
        assert settings.is_configured

    def test_backup_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            BackupSettings(interval_seconds=0)

    def test_app_defaults(self, monkeypatch):
        monkeypatch.delenv("SEED_DEFAULTS", raising=False)
        assert AppSettings().seed_defaults is True

    def test_validate_all_settings(self, monkeypatch):
        monkeypatch.setenv("KV_REST_API_URL", "")
        get_settings.cache_clear()
        try:
            results = validate_all_settings()
        finally:
            get_settings.cache_clear()
        assert results["kv"] is False
        assert results["local_storage"] is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
