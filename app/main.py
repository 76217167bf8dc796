"""
Streamlit Frontend for Pot Ledger

This is the dashboard the bookkeeper uses day to day.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Every write goes through a ledger command
3. Clear error messages in simple language
4. Visual feedback for all operations
5. No hidden actions

The UI never changes balances itself. It submits drafts to the command
layer and reads everything it shows from the query service, which is
fed by the store's change notifications.
"""

import asyncio
import calendar
import datetime as dt
from decimal import Decimal
from typing import Optional

import streamlit as st

from potledger.engine import LEDGER_FAILURES, LedgerValidationError
from potledger.models import (
    Currency,
    EntryType,
    Inflow,
    InflowDraft,
    Outflow,
    OutflowDraft,
    Overdraft,
    OverdraftDraft,
    PaymentMethod,
)
from potledger.orchestrator import LedgerCommands, create_app_components
from potledger.queries import LedgerQueryService
from potledger.validation import LedgerValidator


# Page configuration
st.set_page_config(
    page_title="Pot Ledger",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)

CATEGORIES = [
    "Operational",
    "Salaries",
    "Transport",
    "Equipment",
    "Rent",
    "Utilities",
    "Marketing",
    "Misc",
]


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached)."""
    try:
        return create_app_components(use_storage=True)
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        return create_app_components(use_storage=False)


def money(amount: Decimal) -> str:
    return f"{amount:,.0f} RWF"


def run_command(coro, success_message: str) -> Optional[object]:
    """Run a ledger command and report the outcome. Returns the result or None."""
    try:
        result = run_async(coro)
    except LedgerValidationError as e:
        if e.result is not None:
            st.error(LedgerValidator().get_user_friendly_summary(e.result))
        else:
            st.error(f"❌ {e}")
        return None
    except LEDGER_FAILURES as e:
        st.error(f"❌ {e}")
        return None
    st.success(success_message)
    return result


def main():
    """Main application entry point."""
    commands, queries, _, _ = get_components()

    # Sidebar navigation
    st.sidebar.title("💰 Pot Ledger")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        [
            "📊 Dashboard",
            "📒 Unified Ledger",
            "📥 Inflows",
            "📤 Outflows",
            "⚠️ Overdrafts",
            "🔎 Flow Tracker",
            "🏦 Bank Accounts",
            "📅 Calendar",
            "⚙️ Settings",
        ],
        index=0,
    )

    st.sidebar.markdown("---")
    debt = sum((o.amount for o in queries.active_overdrafts()), Decimal("0"))
    if debt > 0:
        st.sidebar.metric("Exposure", money(debt))
    else:
        st.sidebar.metric("Liquidity", money(queries.dashboard_metrics().current_balance))

    # Route to appropriate page
    if page == "📊 Dashboard":
        render_dashboard_page(queries)
    elif page == "📒 Unified Ledger":
        render_ledger_page(queries)
    elif page == "📥 Inflows":
        render_inflows_page(commands, queries)
    elif page == "📤 Outflows":
        render_outflows_page(commands, queries)
    elif page == "⚠️ Overdrafts":
        render_overdrafts_page(commands, queries)
    elif page == "🔎 Flow Tracker":
        render_flow_page(queries)
    elif page == "🏦 Bank Accounts":
        render_bank_accounts_page(queries)
    elif page == "📅 Calendar":
        render_calendar_page(queries)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_dashboard_page(queries: LedgerQueryService):
    """Render the headline metrics and trends."""
    st.title("📊 Dashboard")
    metrics = queries.dashboard_metrics()

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total Liquidity", money(metrics.current_balance))
    col2.metric(
        "Liquidity Ratio",
        f"{metrics.liquidity_ratio}",
        "Healthy" if metrics.total_in > metrics.total_out else "Critical",
    )
    col3.metric("Monthly Burn", money(metrics.burn_rate))
    col4.metric(
        "Estimated Runway",
        f"{metrics.runway} months" if metrics.runway is not None else "∞",
    )

    col1, col2, col3 = st.columns(3)
    col1.metric("Total In", money(metrics.total_in))
    col2.metric("Total Out", money(metrics.total_out))
    col3.metric("Net Profit", money(metrics.net_profit))

    if metrics.outstanding_debt > 0:
        st.warning(f"⚠️ Outstanding overdrafts: {money(metrics.outstanding_debt)}")

    st.markdown("### Monthly Trend")
    st.bar_chart(
        {
            "Income": {p.month: float(p.income) for p in metrics.monthly_trend},
            "Expenses": {p.month: float(p.expenses) for p in metrics.monthly_trend},
        }
    )

    st.markdown("### Income by Product")
    for product, amount in sorted(metrics.income_by_product.items(), key=lambda kv: -kv[1]):
        share = float(amount / metrics.total_in) if metrics.total_in else 0.0
        st.markdown(f"**{product}**: {money(amount)}")
        st.progress(min(share, 1.0))


def render_ledger_page(queries: LedgerQueryService):
    """Render every record as one searchable list."""
    st.title("📒 Unified Ledger")

    col1, col2 = st.columns([3, 1])
    with col1:
        search = st.text_input("Search party or label")
    with col2:
        entry_type = st.selectbox(
            "Type",
            options=[None] + list(EntryType),
            format_func=lambda x: "All" if x is None else x.value.title(),
        )

    entries = queries.unified_ledger(search=search or None, entry_type=entry_type)
    if not entries:
        st.info("📋 No records match.")
        return

    st.dataframe(
        [
            {
                "Date": entry.date.isoformat(),
                "Type": entry.entry_type.value,
                "Label": entry.label,
                "Party": entry.party,
                "Amount": float(entry.amount),
                "Category": entry.category,
            }
            for entry in entries
        ],
        use_container_width=True,
    )


def render_inflow_edit_form(commands: LedgerCommands, inflow: Inflow):
    """Edit an inflow in place. Unchanged fields keep their stored values."""
    with st.form(f"edit_inflow_{inflow.id}"):
        col1, col2 = st.columns(2)
        with col1:
            source = st.text_input("Source", value=inflow.source)
            product = st.text_input("Product", value=inflow.product)
            amount = st.text_input("Amount", value=f"{inflow.amount:,}")
            date = st.date_input("Date", value=inflow.date)
        with col2:
            bank_account_name = st.text_input(
                "Bank account name", value=inflow.bank_account_name or ""
            )
            account_number = st.text_input("Account number", value=inflow.account_number or "")
            notes = st.text_area("Notes", value=inflow.notes or "")

        if st.form_submit_button("💾 Save changes"):
            draft = InflowDraft(
                source=source,
                product=product,
                amount=amount,
                date=date,
                bank_account_name=bank_account_name or None,
                account_number=account_number or None,
                notes=notes or None,
            )
            run_command(commands.update_inflow(inflow.id, draft), "✅ Inflow updated")


def render_inflows_page(commands: LedgerCommands, queries: LedgerQueryService):
    """Render the funds-received form and the inflow list."""
    st.title("📥 Inflows")

    with st.form("add_inflow", clear_on_submit=True):
        st.markdown("### Record funds received")
        col1, col2 = st.columns(2)
        with col1:
            source = st.text_input("Source")
            product = st.text_input("Product", value="General")
            amount = st.text_input("Amount", help="Commas are fine, e.g. 1,500,000")
            date = st.date_input("Date", value=dt.date.today())
            notes = st.text_area("Notes")
        with col2:
            payment_method = st.selectbox(
                "Payment method",
                options=[None] + list(PaymentMethod),
                format_func=lambda x: "-" if x is None else x.value.replace("_", " ").title(),
            )
            currency = st.selectbox(
                "Currency",
                options=[None] + list(Currency),
                format_func=lambda x: "Default" if x is None else x.value,
            )
            bank_account_name = st.text_input("Bank account name")
            account_number = st.text_input("Account number")
            description = st.text_area("Description")

        if st.form_submit_button("💾 Save Inflow", type="primary"):
            draft = InflowDraft(
                source=source,
                product=product,
                amount=amount,
                date=date,
                payment_method=payment_method,
                currency=currency,
                bank_account_name=bank_account_name or None,
                account_number=account_number or None,
                description=description,
                notes=notes or None,
            )
            run_command(commands.add_inflow(draft), "✅ Inflow saved")

    st.markdown("---")
    for inflow in queries.inflows():
        label = f"{inflow.date} · {inflow.source} · {money(inflow.amount)}"
        with st.expander(label):
            st.markdown(f"Remaining: **{money(inflow.remaining_balance)}**")
            if inflow.is_overdrawn:
                st.error("This pot is overdrawn.")
            st.progress(float(inflow.utilization) / 100)

            col1, col2, col3 = st.columns(3)
            with col1:
                if st.button("🔄 Recalculate", key=f"recalc_{inflow.id}"):
                    result = run_command(
                        commands.recalculate_inflow_balance(inflow.id),
                        "✅ Balance recalculated",
                    )
                    if result is not None and result.drift:
                        st.info(f"Corrected by {money(result.drift)}")
            with col2:
                new_balance = st.text_input("Set balance", key=f"balance_{inflow.id}")
                if st.button("✏️ Set", key=f"set_{inflow.id}") and new_balance:
                    run_command(
                        commands.set_inflow_balance(inflow.id, new_balance),
                        "✅ Balance updated",
                    )
            with col3:
                if st.button("🗑️ Delete", key=f"delete_{inflow.id}"):
                    run_command(commands.delete_inflow(inflow.id), "✅ Inflow deleted")

            if st.checkbox("✏️ Edit", key=f"edit_inflow_toggle_{inflow.id}"):
                render_inflow_edit_form(commands, inflow)


def render_outflow_edit_form(
    commands: LedgerCommands,
    outflow: Outflow,
    sources: dict[str, str],
):
    """Edit an outflow, including moving it to another fund source."""
    with st.form(f"edit_outflow_{outflow.id}"):
        source_keys = list(sources)
        current = str(outflow.inflow_id)
        col1, col2 = st.columns(2)
        with col1:
            inflow_id = st.selectbox(
                "Fund source",
                options=source_keys,
                index=source_keys.index(current) if current in sources else 0,
                format_func=lambda key: sources[key],
            )
            seller = st.text_input("Seller", value=outflow.seller)
            amount = st.text_input("Amount", value=f"{outflow.amount:,}")
            date = st.date_input("Date", value=outflow.date)
        with col2:
            purpose = st.text_input("Purpose", value=outflow.purpose)
            category = st.text_input("Category", value=outflow.category)
            expense_name = st.text_input("Expense name", value=outflow.expense_name or "")
            notes = st.text_area("Notes", value=outflow.notes or "")

        if st.form_submit_button("💾 Save changes"):
            draft = OutflowDraft(
                inflow_id=inflow_id,
                seller=seller,
                amount=amount,
                date=date,
                purpose=purpose,
                category=category,
                expense_name=expense_name or None,
                notes=notes or None,
            )
            revision = run_command(
                commands.update_outflow(outflow.id, draft),
                "✅ Expense updated",
            )
            if revision is not None and revision.moved_source:
                st.info("The old fund source was refunded and the new one debited.")


def render_outflows_page(commands: LedgerCommands, queries: LedgerQueryService):
    """Render the expense form and the outflow list."""
    st.title("📤 Outflows")

    sources = {
        str(inflow.id): f"{inflow.source} · {inflow.product} ({money(inflow.remaining_balance)})"
        for inflow in queries.inflows()
    }
    if not sources:
        st.info("Record an inflow first; every expense must come from one.")
        return

    with st.form("add_outflow", clear_on_submit=True):
        st.markdown("### Record an expense")
        col1, col2 = st.columns(2)
        with col1:
            inflow_id = st.selectbox(
                "Fund source",
                options=list(sources),
                format_func=lambda key: sources[key],
            )
            seller = st.text_input("Seller")
            amount = st.text_input("Amount")
            date = st.date_input("Date", value=dt.date.today())
        with col2:
            purpose = st.text_input("Purpose")
            category = st.selectbox("Category", options=CATEGORIES)
            expense_name = st.text_input("Expense name")
            notes = st.text_area("Notes")

        if st.form_submit_button("💾 Save Expense", type="primary"):
            draft = OutflowDraft(
                inflow_id=inflow_id,
                seller=seller,
                amount=amount,
                date=date,
                purpose=purpose,
                category=category,
                expense_name=expense_name or None,
                notes=notes or None,
            )
            recorded = run_command(commands.add_outflow(draft), "✅ Expense saved")
            if recorded is not None and recorded.was_underfunded:
                st.warning(
                    f"⚠️ The fund source was short; an overdraft of "
                    f"{money(recorded.overdraft.amount)} was created."
                )

    st.markdown("---")
    for outflow in queries.outflows():
        label = (
            f"{outflow.date} · {outflow.expense_name or outflow.purpose} · "
            f"{outflow.seller} · {money(outflow.amount)} · {outflow.category}"
        )
        with st.expander(label):
            if st.button("🗑️ Delete", key=f"delete_outflow_{outflow.id}"):
                run_command(
                    commands.delete_outflow(outflow.id),
                    "✅ Expense deleted and refunded",
                )
            if st.checkbox("✏️ Edit", key=f"edit_outflow_toggle_{outflow.id}"):
                render_outflow_edit_form(commands, outflow, sources)


def render_overdraft_edit_form(commands: LedgerCommands, overdraft: Overdraft):
    """Edit an overdraft's details. A settled overdraft's amount stays at zero."""
    with st.form(f"edit_overdraft_{overdraft.id}"):
        seller = st.text_input("Owed to", value=overdraft.seller)
        purpose = st.text_input("Purpose", value=overdraft.purpose)
        amount = None
        if not overdraft.is_settled:
            amount = st.text_input("Amount", value=f"{overdraft.amount:,}")
        date = st.date_input("Date", value=overdraft.date)
        notes = st.text_area("Notes", value=overdraft.notes or "")

        if st.form_submit_button("💾 Save changes"):
            draft = OverdraftDraft(
                seller=seller,
                purpose=purpose,
                amount=amount,
                date=date,
                notes=notes or None,
            )
            run_command(
                commands.update_overdraft(overdraft.id, draft),
                "✅ Overdraft updated",
            )


def render_overdrafts_page(commands: LedgerCommands, queries: LedgerQueryService):
    """Render liabilities and the settlement picker."""
    st.title("⚠️ Overdrafts")

    with st.form("add_overdraft", clear_on_submit=True):
        st.markdown("### Log a liability")
        seller = st.text_input("Owed to")
        purpose = st.text_input("Purpose")
        amount = st.text_input("Amount")
        date = st.date_input("Date", value=dt.date.today())
        if st.form_submit_button("💾 Save Overdraft", type="primary"):
            draft = OverdraftDraft(seller=seller, purpose=purpose, amount=amount, date=date)
            run_command(commands.add_overdraft(draft), "✅ Overdraft logged")

    st.markdown("---")
    fundable = queries.fundable_inflows()
    for overdraft in queries.active_overdrafts():
        with st.expander(f"{overdraft.seller} · {overdraft.purpose} · {money(overdraft.amount)}"):
            if not fundable:
                st.info("No fund source has spare balance.")
            else:
                options = {str(i.id): f"{i.source} ({money(i.remaining_balance)})" for i in fundable}
                inflow_id = st.selectbox(
                    "Pay from",
                    options=list(options),
                    format_func=lambda key: options[key],
                    key=f"pay_from_{overdraft.id}",
                )
                if st.button("💸 Settle", key=f"settle_{overdraft.id}"):
                    result = run_command(
                        commands.settle_overdraft(overdraft.id, inflow_id),
                        "✅ Payment recorded",
                    )
                    if result is not None and not result.is_full_settlement:
                        st.info(f"Still owed: {money(result.overdraft.amount)}")
            if st.button("🗑️ Delete", key=f"delete_overdraft_{overdraft.id}"):
                run_command(commands.delete_overdraft(overdraft.id), "✅ Overdraft deleted")
            if st.checkbox("✏️ Edit", key=f"edit_overdraft_toggle_{overdraft.id}"):
                render_overdraft_edit_form(commands, overdraft)

    settled = queries.settled_overdrafts()
    if settled:
        st.markdown("### Settled")
        for overdraft in settled:
            with st.expander(f"✅ {overdraft.seller} · {overdraft.purpose}"):
                if st.button("🗑️ Delete and refund", key=f"delete_overdraft_{overdraft.id}"):
                    run_command(
                        commands.delete_overdraft(overdraft.id),
                        "✅ Overdraft deleted; settlement payment refunded",
                    )
                if st.checkbox("✏️ Edit", key=f"edit_overdraft_toggle_{overdraft.id}"):
                    render_overdraft_edit_form(commands, overdraft)


def render_bank_accounts_page(queries: LedgerQueryService):
    """Render balances per bank account, from deposits and the payments they funded."""
    st.title("🏦 Bank Accounts")

    accounts = queries.bank_accounts()
    if not accounts:
        st.info("📋 No bank deposits yet.")
        return

    columns = st.columns(min(len(accounts), 3))
    for index, account in enumerate(accounts):
        with columns[index % len(columns)]:
            st.markdown(f"#### {account.name}")
            st.caption(f"{account.number} · {account.currency.value}")
            st.metric("Balance", f"{account.balance:,.0f} {account.currency.value}")
            st.markdown(
                f"In: **{account.total_in:,.0f}** · Out: **{account.total_out:,.0f}**"
            )

    labels = {account.key: f"{account.name} ({account.number})" for account in accounts}
    selected = st.selectbox("Transactions for", options=list(labels), format_func=labels.get)
    account = next(account for account in accounts if account.key == selected)
    st.dataframe(
        [
            {
                "Date": txn.date.isoformat(),
                "Description": txn.description,
                "Amount": float(txn.amount if txn.is_deposit else -txn.amount),
            }
            for txn in account.transactions
        ],
        use_container_width=True,
    )


def render_calendar_page(queries: LedgerQueryService):
    """Render a month of daily totals and one day's detail."""
    st.title("📅 Calendar")

    col1, col2 = st.columns(2)
    today = dt.date.today()
    with col1:
        year = st.number_input("Year", min_value=2000, max_value=2100, value=today.year)
    with col2:
        month = st.selectbox(
            "Month",
            options=list(range(1, 13)),
            index=today.month - 1,
            format_func=lambda m: calendar.month_name[m],
        )

    days = queries.month_calendar(int(year), month)
    st.dataframe(
        [
            {
                "Date": day.date.isoformat(),
                "In": float(day.total_in),
                "Out": float(day.total_out),
            }
            for day in days
            if not day.is_empty
        ],
        use_container_width=True,
    )

    picked = st.date_input("Day", value=dt.date(int(year), month, 1))
    summary = queries.day_summary(picked)
    col1, col2 = st.columns(2)
    col1.metric("Total In", money(summary.total_in))
    col2.metric("Total Out", money(summary.total_out))
    for inflow in summary.inflows:
        st.markdown(f"📥 {inflow.source} · {inflow.product} · {money(inflow.amount)}")
    for outflow in summary.outflows:
        st.markdown(f"📤 {outflow.seller} · {outflow.purpose} · {money(outflow.amount)}")


def render_flow_page(queries: LedgerQueryService):
    """Render where one inflow's money went."""
    st.title("🔎 Flow Tracker")

    inflows = queries.inflows()
    if not inflows:
        st.info("📋 No inflows yet.")
        return

    options = {str(inflow.id): f"{inflow.date} · {inflow.source}" for inflow in inflows}
    selected = st.selectbox("Inflow", options=list(options), format_func=lambda k: options[k])
    trace = queries.flow_trace(selected)
    if trace is None:
        return

    col1, col2, col3 = st.columns(3)
    col1.metric("Principal", money(trace.inflow.amount))
    col2.metric("Spent", money(trace.total_spent))
    col3.metric("Utilization", f"{trace.utilization:.0f}%")

    st.dataframe(
        [
            {
                "Date": outflow.date.isoformat(),
                "Expense": outflow.expense_name or outflow.purpose,
                "Seller": outflow.seller,
                "Amount": float(outflow.amount),
            }
            for outflow in trace.outflows
        ],
        use_container_width=True,
    )


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    from potledger.config import validate_all_settings

    status = validate_all_settings()

    services = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Ledger rules", "ledger"),
        ("Application", "app"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your Google "
        "Sheets credentials. See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()
