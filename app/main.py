"""
Streamlit Frontend for Ledgerbook

A thin shell over LedgerOrchestrator. Forms, pickers and downloads live
here; every figure shown comes from the core.

DESIGN PRINCIPLES:
1. Nothing is computed in the UI
2. Every destructive action asks for confirmation
3. Validation errors are shown in plain language
"""

import asyncio
import threading
from datetime import date, timedelta

import streamlit as st

from ledgerbook.config import validate_all_settings
from ledgerbook.ledger import SORT_OPTIONS, ProtectedTagError
from ledgerbook.models.ledger import AccountType, TransactionType
from ledgerbook.orchestrator import LedgerOrchestrator, create_app_components
from ledgerbook.validation import ValidationError


# Page configuration
st.set_page_config(
    page_title="Ledgerbook",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded",
)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One loop per server process, so the backup timer keeps ticking between reruns."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="ledgerbook-loop", daemon=True).start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


@st.cache_resource
def get_orchestrator() -> LedgerOrchestrator:
    """Get or create application components (cached)."""
    return run_async(create_app_components())


def main():
    """Main application entry point."""
    orchestrator = get_orchestrator()

    st.sidebar.title("📒 Ledgerbook")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["💸 Transactions", "🏦 Accounts", "🏷️ Manage Tags", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.caption(f"Storage: {orchestrator.repository.store.name}")

    if page == "💸 Transactions":
        render_transactions_page(orchestrator)
    elif page == "🏦 Accounts":
        render_accounts_page(orchestrator)
    elif page == "🏷️ Manage Tags":
        render_tags_page(orchestrator)
    elif page == "⚙️ Settings":
        render_settings_page(orchestrator)


def render_transactions_page(orchestrator: LedgerOrchestrator):
    st.title("💸 Transactions")

    account_names = orchestrator.ledger.names()
    tag_names = [tag.name for tag in orchestrator.sorted_tags()]

    with st.form("transaction_form", clear_on_submit=True):
        transaction_type = st.radio(
            "Type",
            options=list(TransactionType),
            format_func=lambda t: t.value.title(),
            horizontal=True,
        )
        amount = st.text_input("Amount")
        description = st.text_area("Description")
        tags = st.multiselect("Tags", options=tag_names)
        new_tags = st.text_input("New tags (comma separated)")
        when = st.date_input("Date", value=date.today())

        col1, col2 = st.columns(2)
        with col1:
            account = st.selectbox("Account (expense/income)", options=[""] + account_names)
        with col2:
            from_account = st.selectbox("From account (transfer)", options=[""] + account_names)
            to_account = st.selectbox("To account (transfer)", options=[""] + account_names)

        if st.form_submit_button("Add Transaction", type="primary"):
            extra = [t.strip() for t in new_tags.split(",") if t.strip()]
            data = {
                "type": transaction_type,
                "amount": amount,
                "description": description,
                "tags": list(dict.fromkeys(tags + extra)),
                "dateTime": f"{when.isoformat()}T12:00:00+00:00",
            }
            if transaction_type == TransactionType.TRANSFER:
                data.update(fromAccount=from_account, toAccount=to_account)
            else:
                data["account"] = account
            try:
                run_async(orchestrator.add_transaction(data))
                st.success("Transaction added")
            except ValidationError as e:
                st.error(f"Could not add transaction: {e.message} ({e.field})")

    st.markdown("---")
    st.subheader("Transaction History")

    col1, col2 = st.columns(2)
    with col1:
        date_range = st.date_input(
            "Date Range",
            value=(date.today() - timedelta(days=30), date.today()),
        )
    with col2:
        selected_tag = st.selectbox("Filter by Tag", options=["all"] + tag_names)

    start_day, end_day = (date_range + (None, None))[:2] if isinstance(date_range, tuple) else (date_range, date_range)
    filtered = orchestrator.filter_transactions(start_day, end_day, selected_tag)

    st.download_button(
        "⬇️ Export CSV",
        data=orchestrator.export_transactions_csv(filtered),
        file_name="transactions.csv",
        mime="text/csv",
    )

    for t in filtered:
        target = t.account or f"{t.from_account} → {t.to_account}"
        cols = st.columns([3, 2, 2, 1])
        cols[0].markdown(f"**{t.description or t.type.value.title()}**  \n{' '.join('#' + tag for tag in t.tags)}")
        cols[1].write(f"{t.type.value.title()} · {t.amount}")
        cols[2].write(f"{target}  \n{t.date_time:%Y-%m-%d %H:%M}")
        if cols[3].button("🗑️", key=f"delete_{t.id}"):
            st.session_state.confirm_delete = t.id

    if filtered:
        with st.expander("Edit Transaction"):
            selected = st.selectbox(
                "Transaction",
                options=filtered,
                format_func=lambda t: f"{t.date_time:%Y-%m-%d} · {t.description or t.type.value} · {t.amount}",
            )
            with st.form("edit_form"):
                amount = st.text_input("Amount", value=str(selected.amount))
                description = st.text_area("Description", value=selected.description)
                tags = st.multiselect("Tags", options=tag_names, default=[t for t in selected.tags if t in tag_names])
                if st.form_submit_button("Save Changes"):
                    try:
                        run_async(orchestrator.update_transaction(
                            selected.id,
                            {"amount": amount, "description": description, "tags": tags},
                        ))
                        st.rerun()
                    except ValidationError as e:
                        st.error(f"Could not update transaction: {e.message} ({e.field})")

    pending = st.session_state.get("confirm_delete")
    if pending:
        st.warning("Delete this transaction? This cannot be undone.")
        col1, col2 = st.columns(2)
        if col1.button("Delete", type="primary"):
            run_async(orchestrator.delete_transaction(pending))
            st.session_state.confirm_delete = None
            st.rerun()
        if col2.button("Cancel"):
            st.session_state.confirm_delete = None
            st.rerun()


def render_accounts_page(orchestrator: LedgerOrchestrator):
    st.title("🏦 Accounts")

    for account in orchestrator.accounts:
        with st.container(border=True):
            st.markdown(f"**{account.name}** · {account.type.value}")
            col1, col2 = st.columns([3, 1])
            with col1:
                reported = st.text_input(
                    "Reported balance",
                    value=str(account.balance),
                    key=f"balance_{account.name}",
                )
            with col2:
                st.write("")
                if st.button("Update", key=f"update_{account.name}"):
                    try:
                        update = run_async(orchestrator.report_balance(account.name, reported))
                        st.success(
                            f"Balance-based expense {update.balance_based_expense}, "
                            f"logged expense {update.input_expense}"
                        )
                    except ValidationError as e:
                        st.error(f"Invalid balance: {e.message}")

            latest = account.latest_update
            if latest is not None:
                st.caption(
                    f"Since last check-in: income {latest.input_income}, "
                    f"expense {latest.input_expense}, "
                    f"balance-based expense {latest.balance_based_expense}"
                )

    totals = orchestrator.totals()
    st.markdown("---")
    cols = st.columns(4)
    cols[0].metric("Total balance", f"{totals.balance}")
    cols[1].metric("Input income", f"{totals.input_income}")
    cols[2].metric("Input expense", f"{totals.input_expense}")
    cols[3].metric("Balance-based expense", f"{totals.balance_based_expense}")

    st.download_button(
        "⬇️ Export CSV",
        data=orchestrator.export_accounts_csv(),
        file_name="account_data.csv",
        mime="text/csv",
    )

    with st.expander("Add New Account"):
        with st.form("account_form", clear_on_submit=True):
            name = st.text_input("Account Name")
            account_type = st.selectbox(
                "Account Type",
                options=list(AccountType),
                format_func=lambda t: t.value,
            )
            balance = st.text_input("Opening Balance", value="0")
            confirmed = st.checkbox("I confirm the opening balance is correct")
            if st.form_submit_button("Add Account"):
                if not confirmed:
                    st.warning("Please confirm the opening balance first.")
                else:
                    try:
                        run_async(orchestrator.add_account(name, account_type, balance))
                        st.rerun()
                    except (ValidationError, ValueError) as e:
                        st.error(str(e))


def render_tags_page(orchestrator: LedgerOrchestrator):
    st.title("🏷️ Manage Tags")

    with st.form("tag_form", clear_on_submit=True):
        new_tag = st.text_input("Add new tag")
        if st.form_submit_button("Add Tag"):
            try:
                run_async(orchestrator.create_tag(new_tag))
            except ValidationError as e:
                st.error(e.message)

    col1, col2 = st.columns(2)
    option = col1.selectbox("Sort by", options=list(SORT_OPTIONS))
    direction = col2.radio("Direction", options=["asc", "desc"], horizontal=True)

    for tag in orchestrator.sorted_tags(option, direction):
        cols = st.columns([2, 1, 1, 2, 2])
        cols[0].markdown(f"**{tag.name}**" + (" 🔒" if tag.is_preloaded else ""))
        cols[1].write(tag.transaction_count)
        cols[2].write(f"{tag.total_amount}")
        cols[3].write(f"{tag.last_used:%Y-%m-%d %H:%M}" if tag.last_used else "never")
        with cols[4]:
            renamed = st.text_input("Rename", key=f"rename_{tag.name}", label_visibility="collapsed")
            c1, c2 = st.columns(2)
            try:
                if c1.button("Rename", key=f"do_rename_{tag.name}") and renamed:
                    run_async(orchestrator.rename_tag(tag.name, renamed))
                    st.rerun()
                if c2.button("Delete", key=f"do_delete_{tag.name}"):
                    run_async(orchestrator.delete_tag(tag.name))
                    st.rerun()
            except ProtectedTagError as e:
                st.error(str(e))
            except ValidationError as e:
                st.error(e.message)


def render_settings_page(orchestrator: LedgerOrchestrator):
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")
    status = validate_all_settings()
    if status.get("kv"):
        st.success(f"✅ Remote KV configured · active backend: {orchestrator.repository.store.name}")
    else:
        st.info("ℹ️ Remote KV not configured, using local storage")

    st.markdown("### Backup")
    if orchestrator.backup is None:
        st.info("Backups are disabled")
    else:
        if st.button("Back up now"):
            snapshot = run_async(orchestrator.backup_now())
            if snapshot is None:
                st.error(f"Backup failed: {orchestrator.backup.last_error}")
            else:
                st.success(f"Backed up {len(snapshot.data)} keys at {snapshot.timestamp}")

    st.markdown("---")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
