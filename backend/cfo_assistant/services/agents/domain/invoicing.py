"""Invoicing agent: invoice generation, listings, collections and recurring billing."""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import column, func, insert, select, table
from sqlalchemy.exc import CompileError, DBAPIError, IntegrityError
from sqlalchemy.orm import selectinload

from .... import models
from ....config import CURRENCY, DEFAULT_INVOICE_BASE, DEFAULT_PAYMENT_TERMS, VAT_RATE
from ....schemas.agents.task import AgentResponse, AgentTask, AgentType
from ...finance_rules import (
    amount_due,
    assess_client_risk,
    days_overdue,
    due_date_for,
    estimate_payment_date,
    is_outstanding,
    is_overdue,
    monthly_equivalent,
    next_sequence_number,
    reminder_tier,
    vat_on_net,
)
from ..base import BaseAgent, OperationRule
from ..text import extract_amount, extract_client_name, format_date, format_sek

logger = logging.getLogger(__name__)

MAX_INSERT_ATTEMPTS = 4
INVOICE_PREFIX = "INV"

# Plain table clause: the INSERT names exactly the payload keys, no column defaults added
INVOICE_TABLE = table("invoices", *(column(col.name, col.type) for col in models.Invoice.__table__.columns))

# Column names a database without them reports on insert
_UNCONSUMED_COLUMNS = re.compile(r"Unconsumed column names: ([\w, ]+)")
_MISSING_COLUMN_PATTERNS = (
    re.compile(r'column "(\w+)" of relation "invoices" does not exist', re.IGNORECASE),
    re.compile(r"table invoices has no column named (\w+)", re.IGNORECASE),
    re.compile(r"Unknown column '(\w+)' in 'field list'", re.IGNORECASE),
)

DEFAULT_LINE_ITEMS = (
    ("Konsulttjänster - Systemutveckling", 0.6),
    ("Projektledning och koordination", 0.4),
)

REMINDER_ACTIONS = {
    "gentle": "Vänlig påminnelse skickad",
    "firm": "Skarp påminnelse med förseningsavgift",
    "final": "Sista påminnelse före inkasso",
}


def _missing_column(error_text: str) -> Optional[str]:
    for pattern in _MISSING_COLUMN_PATTERNS:
        match = pattern.search(error_text)
        if match:
            return match.group(1)
    return None


class InvoicingAgent(BaseAgent):
    """Agent handling invoices and receivables.

    Handles:
    - generate: new invoice with numbering, 25% VAT on top and line items
    - view: invoices, optionally for one client
    - track: payment tracking for the last 30 days
    - remind: tiered reminders for overdue invoices
    - recurring: recurring billing and monthly recurring revenue
    - analyze: invoicing metrics
    - overview: receivables overview with top clients and alerts
    """

    name = "Invoicing Agent"
    type = AgentType.INVOICING
    capabilities = [
        "Invoice generation",
        "Payment tracking",
        "Automated reminders",
        "Recurring billing",
        "Client management",
        "Payment processing",
        "Collections management",
        "Revenue recognition",
    ]
    operation_rules = (
        OperationRule(("generate", "create", "new invoice"), "generate"),
        OperationRule(("show", "list", "display", "find", "get"), "view"),
        OperationRule(("track", "payment", "status"), "track"),
        OperationRule(("remind", "overdue", "follow up"), "remind"),
        OperationRule(("recurring", "subscription", "repeat"), "recurring"),
        OperationRule(("analyze", "metrics", "performance"), "analyze"),
    )
    default_operation = "overview"
    error_messages = {
        "generate": "Fel vid skapande av faktura",
        "view": "Fel vid hämtning av fakturor",
        "track": "Fel vid uppföljning av betalningar",
        "remind": "Fel vid hantering av påminnelser",
        "recurring": "Fel vid hantering av återkommande fakturering",
        "analyze": "Fel vid analys av faktureringsnyckeltal",
        "overview": "Fel vid skapande av fakturaöversikt",
    }

    def operations(self):
        return {
            "generate": self._generate_invoice,
            "view": self._view_invoices,
            "track": self._track_payments,
            "remind": self._send_payment_reminders,
            "recurring": self._manage_recurring_billing,
            "analyze": self._analyze_invoicing_metrics,
            "overview": self._general_overview,
        }

    # ==========================================
    # 🧾 GENERATE
    # ==========================================
    async def _generate_invoice(self, task: AgentTask) -> AgentResponse:
        description = task.description
        client_name = task.input.get("client_name") or extract_client_name(description)
        logger.info(f"[InvoicingAgent] Generating invoice, client hint: {client_name}")

        stmt = select(models.Client)
        if client_name:
            stmt = stmt.where(models.Client.name.ilike(f"%{client_name}%"))
        client = (await self.db.execute(stmt.order_by(models.Client.id).limit(1))).scalars().first()
        if not client:
            message = f'Klienten "{client_name}" hittades inte' if client_name else "Inga aktiva klienter hittades"
            return AgentResponse(success=False, message=message)

        last_invoice = (await self.db.execute(
            select(models.Invoice)
            .options(selectinload(models.Invoice.line_items))
            .where(models.Invoice.client_id == client.id)
            .order_by(models.Invoice.created_at.desc(), models.Invoice.id.desc())
            .limit(1)
        )).scalars().first()

        requested_amount = task.input.get("amount") or extract_amount(description)
        base_amount = float(requested_amount or (last_invoice.subtotal if last_invoice else 0) or DEFAULT_INVOICE_BASE)
        tax_amount = vat_on_net(base_amount, VAT_RATE)
        total_amount = base_amount + tax_amount

        same_details = "same details" in description.lower()
        terms = client.payment_terms or DEFAULT_PAYMENT_TERMS
        issue_date = date.today()

        based_on_previous = bool(same_details and last_invoice and last_invoice.line_items)
        if based_on_previous:
            line_items = [
                {
                    "description": item.description,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                    "line_total": item.line_total,
                }
                for item in last_invoice.line_items
            ]
        else:
            line_items = [
                {
                    "description": text,
                    "quantity": 1.0,
                    "unit_price": round(base_amount * share, 2),
                    "line_total": round(base_amount * share, 2),
                }
                for text, share in DEFAULT_LINE_ITEMS
            ]

        # Plain values only past this point: a rollback during the insert expires ORM instances
        client_info = {"id": client.id, "name": client.name, "email": client.email}
        client_terms = client.payment_terms

        payload = {
            "invoice_number": await self._next_invoice_number(),
            "client_id": client_info["id"],
            "issue_date": issue_date,
            "due_date": due_date_for(issue_date, terms),
            "subtotal": base_amount,
            "tax_amount": tax_amount,
            "total_amount": total_amount,
            "currency": CURRENCY,
            "status": "draft",
            "payment_terms": terms,
            "paid_amount": 0.0,
            "notes": "Baserad på föregående faktura" if same_details else None,
            "created_at": datetime.now(),
        }
        logger.debug(f"[InvoicingAgent] Invoice payload: {payload}")

        invoice = await self._safe_insert_invoice(payload)
        for item in line_items:
            self.db.add(models.InvoiceLineItem(invoice_id=invoice["id"], **item))
        await self.db.commit()

        client_invoice_count = (await self.db.execute(
            select(func.count(models.Invoice.id)).where(models.Invoice.client_id == client_info["id"])
        )).scalar() or 1

        estimated_payment = estimate_payment_date(invoice["due_date"], client_terms)
        logger.info(f"[InvoicingAgent] Created {invoice['invoice_number']} for {client_info['name']}: {total_amount}")

        message = "## ✅ Faktura skapad!\n\n"
        message += f"**📄 Fakturanummer:** {invoice['invoice_number']}\n"
        message += f"**👤 Klient:** {client_info['name']}\n"
        message += f"**💰 Netto:** {format_sek(base_amount)}\n"
        message += f"**🧾 Moms ({VAT_RATE * 100:.0f}%):** {format_sek(tax_amount)}\n"
        message += f"**💰 Totalt:** {format_sek(total_amount)}\n"
        message += f"**📅 Förfallodag:** {format_date(invoice['due_date'])}\n"
        message += f"**🏷️ Klientfaktura #:** {client_invoice_count}\n\n"
        message += "### 📋 Fakturarader\n"
        for item in line_items:
            message += (
                f"• **{item['description']}** - {item['quantity']:g} × {format_sek(item['unit_price'])}"
                f" = {format_sek(item['line_total'])}\n"
            )
        if based_on_previous:
            message += "\nℹ️ *Baserad på föregående faktura*\n"

        return AgentResponse(
            success=True,
            data={
                "invoice": invoice,
                "line_items": line_items,
                "client": client_info,
                "client_risk": assess_client_risk(client_terms),
                "recommended_terms": terms,
                "estimated_payment_date": estimated_payment,
                "client_invoice_count": client_invoice_count,
                "is_based_on_previous": based_on_previous,
            },
            message=message,
            insights=[
                f"👤 Kund: {client_info['name']}",
                f"⏱️ Betalningsvillkor: {terms} dagar",
                f"📅 Förväntad betalning: {format_date(estimated_payment)}",
                f"🔢 Faktura nummer {client_invoice_count} för denna kund",
            ],
            suggestions=[
                "📧 Skicka fakturan via e-post till kunden",
                "🔔 Sätt upp automatisk betalningspåminnelse",
                "✅ Verifiera kundens kontaktuppgifter",
                "🔍 Kontrollera att tjänsterna stämmer med förra månaden"
                if based_on_previous else "📝 Granska fakturarader innan utskick",
            ],
        )

    async def _next_invoice_number(self) -> str:
        last_number = (await self.db.execute(
            select(models.Invoice.invoice_number)
            .order_by(models.Invoice.created_at.desc(), models.Invoice.id.desc())
            .limit(1)
        )).scalar()
        return next_sequence_number(last_number, INVOICE_PREFIX)

    async def _safe_insert_invoice(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Insert an invoice row, tolerating an older table layout.

        A column the table does not have is dropped from the payload and
        the insert retried. A clash on invoice_number moves the number on
        by one. Gives up after MAX_INSERT_ATTEMPTS.

        Returns:
            The payload that was actually persisted, plus its id
        """
        working = dict(payload)

        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            try:
                result = await self.db.execute(
                    insert(INVOICE_TABLE).values(**working).returning(INVOICE_TABLE.c.id)
                )
                return {"id": result.scalar_one(), **working}
            except CompileError as e:
                # Payload key the mapped table does not know about
                match = _UNCONSUMED_COLUMNS.search(str(e))
                if not match:
                    raise
                unknown = [col.strip() for col in match.group(1).split(",") if col.strip() in working]
                if not unknown:
                    raise
                logger.warning(f"[InvoicingAgent] Removing unsupported columns {unknown} and retrying insert")
                for col in unknown:
                    working.pop(col)
            except IntegrityError as e:
                await self.db.rollback()
                if "invoice_number" not in str(e.orig):
                    raise
                clashing = working["invoice_number"]
                working["invoice_number"] = next_sequence_number(clashing, INVOICE_PREFIX)
                logger.warning(
                    f"[InvoicingAgent] Invoice number {clashing} taken, retrying as {working['invoice_number']}"
                )
            except DBAPIError as e:
                await self.db.rollback()
                col = _missing_column(str(e.orig))
                if not col or col not in working:
                    raise
                logger.warning(f"[InvoicingAgent] Removing unsupported column '{col}' and retrying insert")
                working.pop(col)

            logger.debug(f"[InvoicingAgent] Insert attempt {attempt} failed, {MAX_INSERT_ATTEMPTS - attempt} left")

        raise RuntimeError("Failed to insert invoice after retries")

    # ==========================================
    # 📋 VIEW
    # ==========================================
    async def _view_invoices(self, task: AgentTask) -> AgentResponse:
        client_name = task.input.get("client_name") or extract_client_name(task.description)
        logger.info(f"[InvoicingAgent] Viewing invoices, client filter: {client_name}")

        stmt = (
            select(models.Invoice)
            .join(models.Client, models.Invoice.client_id == models.Client.id)
            .options(selectinload(models.Invoice.line_items), selectinload(models.Invoice.client))
        )
        if client_name:
            stmt = stmt.where(models.Client.name.ilike(f"%{client_name}%"))
        invoices = (await self.db.execute(stmt.order_by(models.Invoice.issue_date.desc()))).scalars().all()

        if not invoices:
            return AgentResponse(
                success=True,
                data={"invoices": [], "client_name": client_name},
                message=f"Inga fakturor hittades för {client_name}." if client_name else "Inga fakturor hittades.",
                insights=["Inga fakturor att visa"],
                suggestions=["Skapa en ny faktura", "Kontrollera stavningen av klientnamnet"],
            )

        today = date.today()
        paid = [inv for inv in invoices if inv.status == "paid"]
        outstanding = [inv for inv in invoices if is_outstanding(inv.status)]
        overdue = [inv for inv in outstanding if is_overdue(inv.status, inv.due_date, today)]

        total_amount = sum(inv.total_amount or 0 for inv in invoices)
        paid_amount = sum(inv.total_amount or 0 for inv in paid)
        outstanding_amount = sum(amount_due(inv.total_amount, inv.paid_amount) for inv in outstanding)
        overdue_amount = sum(amount_due(inv.total_amount, inv.paid_amount) for inv in overdue)

        message = f"## 📊 Fakturaöversikt{f' för {client_name}' if client_name else ''}\n\n"
        message += "### 💰 Ekonomisk sammanfattning\n"
        message += f"• **Totalt värde:** {format_sek(total_amount)}\n"
        message += f"• 🟢 **Betalda:** {format_sek(paid_amount)} ({len(paid)} st)\n"
        message += f"• 🟡 **Utestående:** {format_sek(outstanding_amount)} ({len(outstanding)} st)\n"
        if overdue:
            message += f"• 🔴 **Försenade:** {format_sek(overdue_amount)} ({len(overdue)} st)\n"
        message += "\n### 📋 Fakturor\n\n"

        rows = []
        for inv in invoices:
            late = is_overdue(inv.status, inv.due_date, today)
            icon, label = ("✅", "Betald") if inv.status == "paid" else ("🔴", "Försenad") if late else ("🟡", "Väntande")
            rows.append(
                f"{icon} **{inv.invoice_number}** - {format_sek(inv.total_amount)} ({label})\n"
                f"   📅 Fakturadatum: {format_date(inv.issue_date)} | Förfallodatum: {format_date(inv.due_date)}\n"
                f"   📝 {inv.notes or 'Ingen kommentar'}"
            )
        message += "\n\n".join(rows)
        if overdue:
            message += "\n\n### ⚠️ Åtgärder krävs\n"
            message += f"Det finns {len(overdue)} försenade fakturor som kräver uppmärksamhet."

        return AgentResponse(
            success=True,
            data={
                "invoices": [
                    {
                        "id": inv.id,
                        "invoice_number": inv.invoice_number,
                        "client_name": inv.client.name if inv.client else "Okänd klient",
                        "issue_date": inv.issue_date,
                        "due_date": inv.due_date,
                        "amount": inv.total_amount,
                        "status": inv.status,
                        "notes": inv.notes,
                        "line_items_count": len(inv.line_items),
                        "is_overdue": is_overdue(inv.status, inv.due_date, today),
                    }
                    for inv in invoices
                ],
                "summary": {
                    "total_invoices": len(invoices),
                    "total_amount": total_amount,
                    "paid_amount": paid_amount,
                    "outstanding_amount": outstanding_amount,
                    "overdue_amount": overdue_amount,
                    "overdue_count": len(overdue),
                    "client_name": client_name,
                },
            },
            message=message,
            insights=self._compact([
                f"📊 {len(invoices)} fakturor visas",
                f"✅ {len(paid)} betalda" if paid else None,
                f"🟡 {len(outstanding)} utestående" if outstanding else None,
                f"🔴 {len(overdue)} försenade" if overdue else None,
                f"👤 Klient: {client_name}" if client_name else "🏢 Alla klienter",
            ]),
            suggestions=self._compact([
                "🚨 Prioritera försenade fakturor" if overdue else None,
                "📧 Skicka påminnelser",
                "📊 Exportera rapport",
                "➕ Skapa ny faktura",
            ]),
        )

    # ==========================================
    # 💳 TRACK
    # ==========================================
    async def _track_payments(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        invoices = (await self.db.execute(select(models.Invoice))).scalars().all()
        payments = (await self.db.execute(
            select(models.Payment).where(models.Payment.payment_date >= today - timedelta(days=30))
        )).scalars().all()

        paid_count = sum(1 for inv in invoices if inv.status == "paid")
        open_invoices = [inv for inv in invoices if is_outstanding(inv.status)]
        overdue_count = sum(1 for inv in open_invoices if is_overdue(inv.status, inv.due_date, today))
        total_outstanding = sum(amount_due(inv.total_amount, inv.paid_amount) for inv in open_invoices)
        collected = sum(p.amount or 0 for p in payments)
        average_days = await self._average_days_to_payment()

        data = {
            "total_invoices": len(invoices),
            "paid_invoices": paid_count,
            "pending_invoices": len(open_invoices) - overdue_count,
            "overdue_invoices": overdue_count,
            "total_outstanding": total_outstanding,
            "collected_last_30_days": collected,
            "payments_last_30_days": len(payments),
            "average_payment_days": average_days,
        }

        message = "## 💳 Betalningsuppföljning\n\n"
        message += f"• **Fakturor totalt:** {len(invoices)} st\n"
        message += f"• ✅ **Betalda:** {paid_count} st\n"
        message += f"• 🟡 **Utestående:** {format_sek(total_outstanding)}\n"
        message += f"• 🔴 **Försenade:** {overdue_count} st\n"
        message += f"• 💰 **Inbetalt senaste 30 dagarna:** {format_sek(collected)}\n"
        if average_days is not None:
            message += f"• ⏱️ **Genomsnittlig betaltid:** {average_days:.0f} dagar\n"

        return AgentResponse(
            success=True,
            data=data,
            message=message,
            insights=[
                f"✅ {paid_count} fakturor betalda",
                f"🔴 {overdue_count} fakturor försenade",
                f"💰 {format_sek(collected)} inbetalt senaste 30 dagarna",
            ],
            suggestions=[
                "Fokusera indrivning på försenade fakturor",
                "Automatisera betalningsmatchning",
                "Se över betalningsvillkor för kunder som betalar sent",
            ],
        )

    async def _average_days_to_payment(self) -> Optional[float]:
        rows = (await self.db.execute(
            select(models.Payment.payment_date, models.Invoice.issue_date)
            .join(models.Invoice, models.Payment.invoice_id == models.Invoice.id)
        )).all()
        if not rows:
            return None
        return sum((paid_on - issued).days for paid_on, issued in rows) / len(rows)

    # ==========================================
    # 🔔 REMIND
    # ==========================================
    async def _send_payment_reminders(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        candidates = (await self.db.execute(
            select(models.Invoice)
            .options(selectinload(models.Invoice.client))
            .where(models.Invoice.due_date < today)
            .order_by(models.Invoice.due_date)
        )).scalars().all()
        overdue = [inv for inv in candidates if is_outstanding(inv.status)]

        tiers: Dict[str, List[Dict[str, Any]]] = {"gentle": [], "firm": [], "final": []}
        for inv in overdue:
            late_days = days_overdue(inv.due_date, today)
            tier = reminder_tier(late_days)
            tiers[tier].append({
                "invoice": inv.invoice_number,
                "client": inv.client.name if inv.client else "Okänd",
                "email": inv.client.email if inv.client else None,
                "action": REMINDER_ACTIONS[tier],
                "tier": tier,
                "days_overdue": late_days,
                "amount": amount_due(inv.total_amount, inv.paid_amount),
            })
        actions = tiers["gentle"] + tiers["firm"] + tiers["final"]

        if not actions:
            return AgentResponse(
                success=True,
                data={"reminder_actions": [], "tiers": {tier: 0 for tier in tiers}},
                message="🎉 Inga försenade fakturor, inga påminnelser behövs.",
                insights=["Alla fakturor är i tid"],
                suggestions=["Sätt upp automatiska påminnelser inför förfallodag"],
            )

        message = "## 🔔 Betalningspåminnelser\n\n"
        for tier, title in (("gentle", "🟡 Vänliga påminnelser"), ("firm", "🟠 Skarpa påminnelser"), ("final", "🔴 Sista påminnelser")):
            if tiers[tier]:
                message += f"### {title} ({len(tiers[tier])} st)\n"
                for action in tiers[tier]:
                    message += (
                        f"• **{action['invoice']}** - {action['client']} "
                        f"({format_sek(action['amount'])}, {action['days_overdue']} dagar sen)\n"
                    )
                message += "\n"

        return AgentResponse(
            success=True,
            data={
                "reminder_actions": actions,
                "tiers": {tier: len(items) for tier, items in tiers.items()},
                "total_overdue_amount": sum(action["amount"] for action in actions),
            },
            message=message.rstrip() + "\n",
            insights=[
                f"{len(tiers['gentle'])} vänliga påminnelser",
                f"{len(tiers['firm'])} skarpa påminnelser",
                f"{len(tiers['final'])} sista påminnelser",
            ],
            suggestions=self._compact([
                "Överväg inkasso för sista påminnelser" if tiers["final"] else None,
                "Erbjud avbetalningsplan för stora belopp",
                "Se över kreditvillkor för återkommande sena betalare",
            ]),
        )

    # ==========================================
    # 🔁 RECURRING
    # ==========================================
    async def _manage_recurring_billing(self, task: AgentTask) -> AgentResponse:
        bills = (await self.db.execute(
            select(models.RecurringBilling)
            .options(selectinload(models.RecurringBilling.client))
            .where(models.RecurringBilling.is_active.is_(True))
        )).scalars().all()

        mrr = sum(monthly_equivalent(bill.amount, bill.frequency) for bill in bills)
        horizon = date.today() + timedelta(days=7)
        upcoming = [
            {
                "client": bill.client.name if bill.client else "Okänd",
                "template": bill.template_name,
                "amount": bill.amount,
                "due_date": bill.next_billing_date,
                "frequency": bill.frequency.lower(),
            }
            for bill in bills
            if bill.next_billing_date <= horizon
        ]
        average_value = mrr / len(bills) if bills else 0.0

        message = "## 🔁 Återkommande fakturering\n\n"
        message += f"• **Aktiva abonnemang:** {len(bills)} st\n"
        message += f"• **Månatliga återkommande intäkter (MRR):** {format_sek(mrr)}\n"
        message += f"• **Genomsnittligt värde per månad:** {format_sek(average_value)}\n"
        if upcoming:
            message += "\n### 📅 Förfaller inom 7 dagar\n"
            for bill in upcoming:
                message += f"• **{bill['client']}** - {bill['template']} ({format_sek(bill['amount'])}, {format_date(bill['due_date'])})\n"

        return AgentResponse(
            success=True,
            data={
                "active_subscriptions": len(bills),
                "monthly_recurring_revenue": mrr,
                "average_subscription_value": average_value,
                "upcoming_bills": upcoming,
            },
            message=message,
            insights=[
                f"{len(upcoming)} fakturor förfaller inom 7 dagar",
                f"MRR: {format_sek(mrr)}",
            ],
            suggestions=[
                "Följ upp misslyckade betalningar",
                "Överväg rabatt vid årsfakturering för bättre likviditet",
            ],
        )

    # ==========================================
    # 📈 ANALYZE
    # ==========================================
    async def _analyze_invoicing_metrics(self, task: AgentTask) -> AgentResponse:
        metrics = await self._receivables_summary()
        average_days = await self._average_days_to_payment()
        revenue = metrics["total_revenue"]
        outstanding = metrics["outstanding_amount"]

        metrics["collection_efficiency"] = revenue / (revenue + outstanding) * 100 if revenue > 0 else 0.0
        metrics["average_payment_days"] = average_days
        metrics["risk_factors"] = self._compact([
            "Högt försenat belopp kräver uppmärksamhet" if metrics["overdue_amount"] > 10000 else None,
            "Hög andel utestående kundfordringar" if outstanding > revenue * 0.3 else None,
        ])

        message = "## 📈 Faktureringsnyckeltal\n\n"
        message += f"• **Intäkter (inbetalt):** {format_sek(revenue)}\n"
        message += f"• **Utestående:** {format_sek(outstanding)}\n"
        message += f"• **Försenat:** {format_sek(metrics['overdue_amount'])}\n"
        message += f"• **Genomsnittligt fakturavärde:** {format_sek(metrics['average_invoice_value'])}\n"
        message += f"• **Inkasseringsgrad:** {metrics['collection_efficiency']:.1f}%\n"
        for risk in metrics["risk_factors"]:
            message += f"⚠️ {risk}\n"

        return AgentResponse(
            success=True,
            data=metrics,
            message=message,
            insights=[
                f"{metrics['total_invoices']} fakturor totalt",
                f"{format_sek(outstanding)} utestående kundfordringar",
                f"{format_sek(metrics['overdue_amount'])} försenat",
            ],
            suggestions=[
                "Fokusera på att driva in försenade belopp",
                "Inför striktare kreditkontroll",
                "Överväg rabatt vid snabb betalning",
            ],
        )

    async def _receivables_summary(self) -> Dict[str, Any]:
        today = date.today()
        invoices = (await self.db.execute(select(models.Invoice))).scalars().all()
        open_invoices = [inv for inv in invoices if is_outstanding(inv.status)]
        return {
            "invoices": invoices,
            "total_invoices": len(invoices),
            "total_revenue": sum(inv.paid_amount or 0 for inv in invoices),
            "outstanding_amount": sum(amount_due(inv.total_amount, inv.paid_amount) for inv in open_invoices),
            "overdue_amount": sum(
                amount_due(inv.total_amount, inv.paid_amount)
                for inv in open_invoices if is_overdue(inv.status, inv.due_date, today)
            ),
            "average_invoice_value": (
                sum(inv.total_amount or 0 for inv in invoices) / len(invoices) if invoices else 0.0
            ),
        }

    # ==========================================
    # 🏢 OVERVIEW
    # ==========================================
    async def _general_overview(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        summary = await self._receivables_summary()
        invoices = summary.pop("invoices")
        clients = (await self.db.execute(select(models.Client))).scalars().all()

        client_revenue = sorted(
            (
                {
                    "name": client.name,
                    "revenue": sum(inv.paid_amount or 0 for inv in invoices if inv.client_id == client.id),
                    "invoices": sum(1 for inv in invoices if inv.client_id == client.id),
                }
                for client in clients
            ),
            key=lambda row: row["revenue"],
            reverse=True,
        )[:3]

        alerts = [
            f"Faktura {inv.invoice_number} är försenad"
            for inv in invoices if is_overdue(inv.status, inv.due_date, today)
        ]
        for client in clients:
            exposure = sum(
                inv.total_amount or 0 for inv in invoices
                if inv.client_id == client.id and is_outstanding(inv.status)
            )
            if (client.credit_limit or 0) > 0 and exposure > client.credit_limit * 0.8:
                alerts.append(f"{client.name} närmar sig kreditgränsen")
        alerts = alerts[:5]

        message = "## 📈 Fakturaöversikt - Alla klienter\n\n"
        message += "### 💰 Ekonomisk sammanfattning\n"
        message += f"• **Totala fakturor:** {summary['total_invoices']} st\n"
        message += f"• 🟢 **Intjänade intäkter:** {format_sek(summary['total_revenue'])}\n"
        message += f"• 🟡 **Utestående belopp:** {format_sek(summary['outstanding_amount'])}\n"
        if summary["overdue_amount"] > 0:
            message += f"• 🔴 **Försenade betalningar:** {format_sek(summary['overdue_amount'])}\n"
        message += f"• 📊 **Genomsnittligt fakturavärde:** {format_sek(summary['average_invoice_value'])}\n\n"

        if client_revenue:
            message += "### 🏆 Toppklienter\n"
            for medal, row in zip(("🥇", "🥈", "🥉"), client_revenue):
                message += f"{medal} **{row['name']}** - {format_sek(row['revenue'])} ({row['invoices']} fakturor)\n"
            message += "\n"
        if alerts:
            message += "### ⚠️ Uppmärksamhet krävs\n"
            for alert in alerts:
                message += f"{'🔴' if 'försenad' in alert else '⚠️'} {alert}\n"

        return AgentResponse(
            success=True,
            data={**summary, "top_clients": client_revenue, "alerts": alerts},
            message=message,
            insights=self._compact([
                f"📊 {summary['total_invoices']} fakturor totalt",
                f"⚠️ {len(alerts)} uppmärksamhetspunkter" if alerts else None,
                f"🏆 Toppklient: {client_revenue[0]['name']}" if client_revenue else None,
                f"🔴 {format_sek(summary['overdue_amount'])} försenat" if summary["overdue_amount"] > 0 else None,
            ]),
            suggestions=self._compact([
                "🚨 Prioritera försenade betalningar" if summary["overdue_amount"] > 0 else None,
                "📊 Granska kreditgränser för toppklienter",
                "🔄 Implementera automatiska påminnelser",
                "💳 Överväg fler betalningsalternativ",
            ]),
        )
