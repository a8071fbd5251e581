"""Reporting agent: statements, KPIs, tax, forecasts and summaries.

Every figure is computed from the ledger (transactions and their line
items), invoices, payments, receipts and budget categories. Periods are
calendar months unless a trailing window is stated.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from .... import models
from ....config import VAT_RATE
from ....schemas.agents.task import AgentResponse, AgentTask, AgentType
from ...finance_rules import (
    CORPORATE_TAX_RATE,
    amount_due,
    corporate_tax,
    is_outstanding,
    is_overdue,
    month_bounds,
    monthly_equivalent,
    percent_change,
)
from ..base import BaseAgent, OperationRule
from ..text import format_sek

logger = logging.getLogger(__name__)

FORECAST_MONTHS = 3
CONCENTRATION_WARNING = 0.4
CASH_ACCOUNT = "1000"

MONTH_NAMES = (
    "januari", "februari", "mars", "april", "maj", "juni",
    "juli", "augusti", "september", "oktober", "november", "december",
)


def month_label(day: date) -> str:
    return f"{MONTH_NAMES[day.month - 1]} {day.year}"


class ReportingAgent(BaseAgent):
    """Financial reporting computed on demand.

    Operations: financial_statements, kpi_dashboard, business_insights,
    tax_report, forecast, cash_flow, budget_variance, executive_summary.
    """

    name = "Reporting Agent"
    type = AgentType.REPORTING
    capabilities = [
        "Financial statements",
        "KPI dashboard",
        "Business insights",
        "VAT and tax reporting",
        "Forecasting",
        "Cash flow analysis",
        "Budget variance",
        "Executive summary",
    ]
    # Task descriptions read "Preparing financial report for: ...", so "report" never selects a tag
    operation_rules = (
        OperationRule(("income statement", "balance sheet", "resultaträkning", "balansräkning", "p&l", "profit"), "financial_statements"),
        OperationRule(("kpi", "dashboard", "metrics", "nyckeltal"), "kpi_dashboard"),
        OperationRule(("tax", "vat", "moms", "skatt"), "tax_report"),
        OperationRule(("forecast", "prognos", "predict", "projection"), "forecast"),
        OperationRule(("cash flow", "cashflow", "kassaflöde", "liquidity", "likviditet"), "cash_flow"),
        OperationRule(("budget", "variance", "avvikelse"), "budget_variance"),
        OperationRule(("insight", "recommend", "opportunit", "improve", "förbättr"), "business_insights"),
    )
    default_operation = "executive_summary"
    error_messages = {
        "financial_statements": "Fel vid skapande av finansiella rapporter",
        "kpi_dashboard": "Fel vid beräkning av nyckeltal",
        "business_insights": "Fel vid analys av verksamheten",
        "tax_report": "Fel vid skapande av skatterapport",
        "forecast": "Fel vid prognos",
        "cash_flow": "Fel vid kassaflödesanalys",
        "budget_variance": "Fel vid budgetuppföljning",
        "executive_summary": "Fel vid skapande av sammanfattning",
    }

    def operations(self):
        return {
            "financial_statements": self._financial_statements,
            "kpi_dashboard": self._kpi_dashboard,
            "business_insights": self._business_insights,
            "tax_report": self._tax_report,
            "forecast": self._forecast,
            "cash_flow": self._cash_flow,
            "budget_variance": self._budget_variance,
            "executive_summary": self._executive_summary,
        }

    # ==========================================
    # 🧮 LEDGER HELPERS
    # ==========================================
    async def _ledger_lines(self, start: Optional[date] = None, end: Optional[date] = None) -> List[tuple]:
        stmt = (
            select(
                models.Account.account_code,
                models.Account.account_name,
                models.Account.account_type,
                models.TransactionLineItem.debit_amount,
                models.TransactionLineItem.credit_amount,
            )
            .join(models.TransactionLineItem, models.TransactionLineItem.account_id == models.Account.id)
            .join(models.Transaction, models.TransactionLineItem.transaction_id == models.Transaction.id)
        )
        if start is not None:
            stmt = stmt.where(models.Transaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(models.Transaction.transaction_date < end)
        return (await self.db.execute(stmt)).all()

    async def _income_statement(self, start: date, end: date) -> Dict[str, Any]:
        revenue: Dict[str, float] = defaultdict(float)
        expenses: Dict[str, float] = defaultdict(float)
        for code, name, account_type, debit, credit in await self._ledger_lines(start, end):
            if account_type == "Revenue":
                revenue[name] += (credit or 0) - (debit or 0)
            elif account_type == "Expense":
                expenses[name] += (debit or 0) - (credit or 0)

        total_revenue = sum(revenue.values())
        total_expenses = sum(expenses.values())
        operating_result = total_revenue - total_expenses
        tax = corporate_tax(operating_result)
        return {
            "period_start": start,
            "period_end": end - timedelta(days=1),
            "revenue": dict(revenue),
            "expenses": dict(expenses),
            "total_revenue": total_revenue,
            "total_expenses": total_expenses,
            "operating_result": operating_result,
            "corporate_tax": tax,
            "net_result": operating_result - tax,
            "profit_margin": operating_result / total_revenue * 100 if total_revenue else 0.0,
        }

    async def _balance_sheet(self) -> Dict[str, Any]:
        balances: Dict[str, Dict[str, float]] = {"Asset": {}, "Liability": {}, "Equity": {}}
        for code, name, account_type, debit, credit in await self._ledger_lines():
            if account_type not in balances:
                continue
            # Assets carry debit balances, liabilities and equity credit balances
            movement = (debit or 0) - (credit or 0)
            if account_type != "Asset":
                movement = -movement
            balances[account_type][name] = balances[account_type].get(name, 0.0) + movement

        invoices = (await self.db.execute(select(models.Invoice))).scalars().all()
        receivables = sum(amount_due(inv.total_amount, inv.paid_amount) for inv in invoices if is_outstanding(inv.status))
        return {
            "assets": balances["Asset"],
            "liabilities": balances["Liability"],
            "equity": balances["Equity"],
            "total_assets": sum(balances["Asset"].values()),
            "total_liabilities": sum(balances["Liability"].values()),
            "total_equity": sum(balances["Equity"].values()),
            "invoiced_receivables": receivables,
        }

    async def _cash_balance(self) -> float:
        return sum(
            (debit or 0) - (credit or 0)
            for code, name, account_type, debit, credit in await self._ledger_lines()
            if code == CASH_ACCOUNT
        )

    async def _invoices(self) -> List[models.Invoice]:
        return (await self.db.execute(select(models.Invoice))).scalars().all()

    # ==========================================
    # 📑 FINANCIAL STATEMENTS
    # ==========================================
    async def _financial_statements(self, task: AgentTask) -> AgentResponse:
        start, end = month_bounds(date.today())
        income = await self._income_statement(start, end)
        balance = await self._balance_sheet()

        message = f"## 📑 Resultaträkning - {month_label(start)}\n\n"
        message += "### Intäkter\n"
        for name, amount in sorted(income["revenue"].items()):
            message += f"• {name}: {format_sek(amount)}\n"
        message += f"**Summa intäkter:** {format_sek(income['total_revenue'])}\n\n"
        message += "### Kostnader\n"
        for name, amount in sorted(income["expenses"].items()):
            message += f"• {name}: {format_sek(amount)}\n"
        message += f"**Summa kostnader:** {format_sek(income['total_expenses'])}\n\n"
        message += f"**Rörelseresultat:** {format_sek(income['operating_result'])}\n"
        message += f"**Bolagsskatt ({CORPORATE_TAX_RATE * 100:.1f}%):** {format_sek(income['corporate_tax'])}\n"
        message += f"**Årets resultat:** {format_sek(income['net_result'])}\n\n"
        message += "## ⚖️ Balansräkning\n\n"
        message += f"• **Tillgångar:** {format_sek(balance['total_assets'])}\n"
        message += f"• **Skulder:** {format_sek(balance['total_liabilities'])}\n"
        message += f"• **Eget kapital:** {format_sek(balance['total_equity'])}\n"
        message += f"• **Kundfordringar (fakturor):** {format_sek(balance['invoiced_receivables'])}\n"

        return AgentResponse(
            success=True,
            data={"income_statement": income, "balance_sheet": balance},
            message=message,
            insights=[
                f"Rörelsemarginal: {income['profit_margin']:.1f}%",
                f"Resultat efter skatt: {format_sek(income['net_result'])}",
            ],
            suggestions=["Jämför med föregående månad", "Exportera rapporten till revisorn"],
        )

    # ==========================================
    # 📊 KPI DASHBOARD
    # ==========================================
    async def _kpi_dashboard(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        start, end = month_bounds(today)
        income = await self._income_statement(start, end)
        invoices = await self._invoices()

        outstanding = sum(amount_due(inv.total_amount, inv.paid_amount) for inv in invoices if is_outstanding(inv.status))
        overdue = sum(
            amount_due(inv.total_amount, inv.paid_amount) for inv in invoices if is_overdue(inv.status, inv.due_date, today)
        )
        window_start = today - timedelta(days=90)
        invoiced_90 = sum(inv.total_amount or 0 for inv in invoices if inv.issue_date >= window_start)
        dso = outstanding / (invoiced_90 / 90) if invoiced_90 else 0.0
        total_invoiced = sum(inv.total_amount or 0 for inv in invoices)
        collected = sum(inv.paid_amount or 0 for inv in invoices)
        pending_receipts = len((await self.db.execute(
            select(models.Receipt.id).where(models.Receipt.status == "pending")
        )).scalars().all())

        kpis = {
            "revenue_month": income["total_revenue"],
            "expenses_month": income["total_expenses"],
            "profit_margin": income["profit_margin"],
            "accounts_receivable": outstanding,
            "overdue_receivables": overdue,
            "days_sales_outstanding": dso,
            "collection_rate": collected / total_invoiced * 100 if total_invoiced else 0.0,
            "average_invoice_value": total_invoiced / len(invoices) if invoices else 0.0,
            "pending_receipts": pending_receipts,
            "cash_balance": await self._cash_balance(),
        }

        message = f"## 📊 Nyckeltal - {month_label(start)}\n\n"
        message += f"• **Intäkter:** {format_sek(kpis['revenue_month'])}\n"
        message += f"• **Kostnader:** {format_sek(kpis['expenses_month'])}\n"
        message += f"• **Rörelsemarginal:** {kpis['profit_margin']:.1f}%\n"
        message += f"• **Likvida medel:** {format_sek(kpis['cash_balance'])}\n"
        message += f"• **Kundfordringar:** {format_sek(outstanding)} (varav försenat {format_sek(overdue)})\n"
        message += f"• **DSO:** {dso:.0f} dagar\n"
        message += f"• **Inbetalningsgrad:** {kpis['collection_rate']:.1f}%\n"
        message += f"• **Kvitton att godkänna:** {pending_receipts} st\n"

        return AgentResponse(
            success=True,
            data=kpis,
            message=message,
            insights=self._compact([
                f"DSO {dso:.0f} dagar" if invoiced_90 else None,
                f"{format_sek(overdue)} är försenat" if overdue else None,
                f"Rörelsemarginal {kpis['profit_margin']:.1f}%",
            ]),
            suggestions=self._compact([
                "Skicka påminnelser för försenade fakturor" if overdue else None,
                "Godkänn väntande kvitton" if pending_receipts else None,
            ]),
        )

    # ==========================================
    # 💡 BUSINESS INSIGHTS
    # ==========================================
    async def _business_insights(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        current = await self._income_statement(*month_bounds(today))
        previous = await self._income_statement(*month_bounds(today, 1))
        invoices = await self._invoices()

        revenue_change = percent_change(current["total_revenue"], previous["total_revenue"])
        expense_change = percent_change(current["total_expenses"], previous["total_expenses"])

        by_client: Dict[int, float] = defaultdict(float)
        for inv in invoices:
            by_client[inv.client_id] += inv.subtotal or 0
        total_invoiced = sum(by_client.values())
        top_share = max(by_client.values()) / total_invoiced if total_invoiced else 0.0
        overdue_count = sum(1 for inv in invoices if is_overdue(inv.status, inv.due_date, today))

        findings = self._compact([
            f"Intäkterna har ökat med {revenue_change:.0f}% mot förra månaden" if revenue_change > 0 else None,
            f"Intäkterna har minskat med {abs(revenue_change):.0f}% mot förra månaden" if revenue_change < 0 else None,
            f"Kostnaderna har ökat med {expense_change:.0f}%" if expense_change > 10 else None,
            f"Största kund står för {top_share:.0%} av faktureringen" if top_share > CONCENTRATION_WARNING else None,
            f"{overdue_count} fakturor är försenade" if overdue_count else None,
        ]) or ["Inga avvikelser upptäcktes denna månad"]
        recommendations = self._compact([
            "Bredda kundbasen för att minska beroendet av en kund" if top_share > CONCENTRATION_WARNING else None,
            "Se över kostnadsökningen per konto" if expense_change > 10 else None,
            "Skärp rutinerna för betalningsuppföljning" if overdue_count else None,
            "Fortsätt följa upp nyckeltalen månadsvis",
        ])

        message = "## 💡 Affärsinsikter\n\n"
        message += "\n".join(f"• {finding}" for finding in findings)
        message += "\n\n### Rekommendationer\n"
        message += "\n".join(f"• {rec}" for rec in recommendations)

        return AgentResponse(
            success=True,
            data={
                "revenue_change_pct": revenue_change,
                "expense_change_pct": expense_change,
                "top_client_share": top_share,
                "overdue_invoices": overdue_count,
                "findings": findings,
                "recommendations": recommendations,
            },
            message=message,
            insights=findings,
            suggestions=recommendations,
        )

    # ==========================================
    # 🧾 TAX REPORT
    # ==========================================
    async def _tax_report(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        start, end = month_bounds(today)
        invoices = await self._invoices()
        output_vat = sum(inv.tax_amount or 0 for inv in invoices if start <= inv.issue_date < end)
        receipts = (await self.db.execute(
            select(models.Receipt).where(
                models.Receipt.receipt_date >= start,
                models.Receipt.receipt_date < end,
                models.Receipt.status != "rejected",
            )
        )).scalars().all()
        input_vat = sum(receipt.tax_amount or 0 for receipt in receipts)
        vat_payable = output_vat - input_vat

        ytd = await self._income_statement(date(today.year, 1, 1), end)

        message = f"## 🧾 Moms och skatt - {month_label(start)}\n\n"
        message += f"• **Utgående moms ({VAT_RATE * 100:.0f}%):** {format_sek(output_vat, 2)}\n"
        message += f"• **Ingående moms:** {format_sek(input_vat, 2)}\n"
        message += f"• **Moms att {'betala' if vat_payable >= 0 else 'få tillbaka'}:** {format_sek(abs(vat_payable), 2)}\n\n"
        message += f"• **Resultat hittills i år:** {format_sek(ytd['operating_result'])}\n"
        message += f"• **Beräknad bolagsskatt ({CORPORATE_TAX_RATE * 100:.1f}%):** {format_sek(ytd['corporate_tax'])}\n"

        return AgentResponse(
            success=True,
            data={
                "period_start": start,
                "output_vat": output_vat,
                "input_vat": input_vat,
                "vat_payable": vat_payable,
                "ytd_result": ytd["operating_result"],
                "estimated_corporate_tax": ytd["corporate_tax"],
            },
            message=message,
            insights=[
                f"Moms att {'betala' if vat_payable >= 0 else 'återfå'}: {format_sek(abs(vat_payable))}",
                f"Beräknad bolagsskatt: {format_sek(ytd['corporate_tax'])}",
            ],
            suggestions=["Avsätt medel för momsinbetalningen", "Stäm av momsen mot Skatteverkets skattekonto"],
        )

    # ==========================================
    # 🔮 FORECAST
    # ==========================================
    async def _forecast(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        history = [await self._income_statement(*month_bounds(today, back)) for back in range(1, FORECAST_MONTHS + 1)]
        avg_revenue = sum(month["total_revenue"] for month in history) / FORECAST_MONTHS
        avg_expenses = sum(month["total_expenses"] for month in history) / FORECAST_MONTHS

        bills = (await self.db.execute(
            select(models.RecurringBilling).where(models.RecurringBilling.is_active.is_(True))
        )).scalars().all()
        mrr = sum(monthly_equivalent(bill.amount, bill.frequency) for bill in bills)

        invoices = await self._invoices()
        projections = []
        for ahead in range(1, FORECAST_MONTHS + 1):
            # Negative months_back walks forward
            start, end = month_bounds(today, -ahead)
            expected_collections = sum(
                amount_due(inv.total_amount, inv.paid_amount)
                for inv in invoices
                if is_outstanding(inv.status) and start <= inv.due_date < end
            )
            revenue = max(avg_revenue, mrr)
            projections.append({
                "month": start,
                "label": month_label(start),
                "projected_revenue": revenue,
                "projected_expenses": avg_expenses,
                "projected_result": revenue - avg_expenses,
                "expected_collections": expected_collections,
            })

        message = f"## 🔮 Prognos - kommande {FORECAST_MONTHS} månader\n\n"
        message += f"Baserat på snittet av de senaste {FORECAST_MONTHS} månaderna och återkommande intäkter.\n\n"
        for row in projections:
            message += (
                f"• **{row['label']}:** intäkter {format_sek(row['projected_revenue'])}, "
                f"kostnader {format_sek(row['projected_expenses'])}, "
                f"resultat {format_sek(row['projected_result'])}\n"
            )

        negative = [row["label"] for row in projections if row["projected_result"] < 0]
        return AgentResponse(
            success=True,
            data={
                "average_revenue": avg_revenue,
                "average_expenses": avg_expenses,
                "monthly_recurring_revenue": mrr,
                "projections": projections,
            },
            message=message,
            insights=self._compact([
                f"MRR: {format_sek(mrr)}" if mrr else None,
                f"Negativt resultat väntas: {', '.join(negative)}" if negative else None,
            ]),
            suggestions=["Uppdatera prognosen när nya fakturor skickas"],
        )

    # ==========================================
    # 💧 CASH FLOW
    # ==========================================
    async def _cash_flow(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        since = today - timedelta(days=30)
        inflow = outflow = 0.0
        for code, name, account_type, debit, credit in await self._ledger_lines(since, today + timedelta(days=1)):
            if code == CASH_ACCOUNT:
                inflow += debit or 0
                outflow += credit or 0

        payments = (await self.db.execute(
            select(models.Payment).where(models.Payment.payment_date >= since)
        )).scalars().all()
        received = sum(payment.amount for payment in payments)

        invoices = await self._invoices()
        horizon = today + timedelta(days=30)
        expected_in = sum(
            amount_due(inv.total_amount, inv.paid_amount)
            for inv in invoices
            if is_outstanding(inv.status) and inv.due_date <= horizon
        )
        pending_receipts = (await self.db.execute(
            select(models.Receipt).where(models.Receipt.status.in_(("pending", "approved")))
        )).scalars().all()
        expected_out = sum(receipt.amount for receipt in pending_receipts)
        balance = await self._cash_balance()

        message = "## 💧 Kassaflöde\n\n"
        message += "### Senaste 30 dagarna\n"
        message += f"• **In:** {format_sek(inflow)}\n"
        message += f"• **Ut:** {format_sek(outflow)}\n"
        message += f"• **Netto:** {format_sek(inflow - outflow)}\n"
        message += f"• **Kundinbetalningar:** {format_sek(received)}\n\n"
        message += "### Kommande 30 dagar\n"
        message += f"• **Förväntade inbetalningar:** {format_sek(expected_in)}\n"
        message += f"• **Utlägg att ersätta:** {format_sek(expected_out)}\n"
        message += f"• **Likvida medel idag:** {format_sek(balance)}\n"

        projected = balance + expected_in - expected_out
        return AgentResponse(
            success=True,
            data={
                "inflow_30_days": inflow,
                "outflow_30_days": outflow,
                "net_cash_flow": inflow - outflow,
                "payments_received": received,
                "expected_inflow": expected_in,
                "expected_outflow": expected_out,
                "cash_balance": balance,
                "projected_balance": projected,
            },
            message=message,
            insights=self._compact([
                f"Nettokassaflöde: {format_sek(inflow - outflow)}",
                "Likviditeten kan bli ansträngd kommande månad" if projected < 0 else None,
            ]),
            suggestions=self._compact([
                "Driv in förfallna fakturor snabbare" if expected_in else None,
                "Överväg en checkkredit som buffert" if projected < 0 else None,
            ]),
        )

    # ==========================================
    # 🎯 BUDGET VARIANCE
    # ==========================================
    async def _budget_variance(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        start, end = month_bounds(today)
        budgets = (await self.db.execute(
            select(models.BudgetCategory).where(models.BudgetCategory.budget_year == today.year)
        )).scalars().all()
        if not budgets:
            return AgentResponse(
                success=True,
                data={"lines": [], "year": today.year},
                message=f"Ingen budget finns registrerad för {today.year}.",
                insights=["Budget saknas"],
                suggestions=["Lägg upp en månadsbudget per kostnadskonto"],
            )

        actual_by_code: Dict[str, float] = defaultdict(float)
        for code, name, account_type, debit, credit in await self._ledger_lines(start, end):
            actual_by_code[code] += (debit or 0) - (credit or 0)

        accounts = {
            account.id: account.account_code
            for account in (await self.db.execute(select(models.Account))).scalars().all()
        }
        lines = []
        for budget in budgets:
            actual = actual_by_code.get(accounts.get(budget.account_id), 0.0)
            variance = actual - budget.monthly_budget
            lines.append({
                "category": budget.name,
                "budget": budget.monthly_budget,
                "actual": actual,
                "variance": variance,
                "variance_pct": variance / budget.monthly_budget * 100 if budget.monthly_budget else 0.0,
                "over_budget": variance > 0,
            })

        over = [line for line in lines if line["over_budget"]]
        message = f"## 🎯 Budgetuppföljning - {month_label(start)}\n\n"
        for line in lines:
            icon = "🔴" if line["over_budget"] else "🟢"
            message += (
                f"{icon} **{line['category']}:** {format_sek(line['actual'])} av {format_sek(line['budget'])} "
                f"({line['variance_pct']:+.0f}%)\n"
            )

        return AgentResponse(
            success=True,
            data={
                "year": today.year,
                "lines": lines,
                "total_budget": sum(line["budget"] for line in lines),
                "total_actual": sum(line["actual"] for line in lines),
            },
            message=message,
            insights=[f"{len(over)} av {len(lines)} budgetposter överskrids"],
            suggestions=[f"Se över {line['category']}" for line in over][:3],
        )

    # ==========================================
    # 📋 EXECUTIVE SUMMARY
    # ==========================================
    async def _executive_summary(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        start, end = month_bounds(today)
        income = await self._income_statement(start, end)
        invoices = await self._invoices()
        receivables = sum(amount_due(inv.total_amount, inv.paid_amount) for inv in invoices if is_outstanding(inv.status))
        overdue = sum(
            amount_due(inv.total_amount, inv.paid_amount) for inv in invoices if is_overdue(inv.status, inv.due_date, today)
        )
        cash = await self._cash_balance()

        highlights = self._compact([
            f"Resultat {format_sek(income['operating_result'])} för {month_label(start)}",
            f"{format_sek(overdue)} i försenade kundfordringar" if overdue else None,
            "Negativa likvida medel" if cash < 0 else None,
        ])

        message = f"## 📋 Sammanfattning - {month_label(start)}\n\n"
        message += f"• **Intäkter:** {format_sek(income['total_revenue'])}\n"
        message += f"• **Kostnader:** {format_sek(income['total_expenses'])}\n"
        message += f"• **Resultat:** {format_sek(income['operating_result'])}\n"
        message += f"• **Likvida medel:** {format_sek(cash)}\n"
        message += f"• **Kundfordringar:** {format_sek(receivables)}\n"

        return AgentResponse(
            success=True,
            data={
                "period_start": start,
                "revenue": income["total_revenue"],
                "expenses": income["total_expenses"],
                "operating_result": income["operating_result"],
                "cash_balance": cash,
                "accounts_receivable": receivables,
                "overdue_receivables": overdue,
            },
            message=message,
            insights=highlights,
            suggestions=["Be om en kassaflödesanalys", "Be om en budgetuppföljning"],
        )
