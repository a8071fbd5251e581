"""Receipts agent: registration, approval and expense analysis of receipts."""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select

from .... import models
from ....config import AUTO_APPROVE_LIMIT, CURRENCY
from ....schemas.agents.task import AgentResponse, AgentTask, AgentType
from ...finance_rules import (
    UNKNOWN_VENDOR,
    is_auto_approvable,
    manual_review_reason,
    next_sequence_number,
    rate_from_percent,
    vat_from_gross,
)
from ..base import BaseAgent, OperationRule
from ..text import extract_amount, extract_document_number, extract_vendor, format_date, format_sek

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "REC"
VIEW_LIMIT = 20
AUTO_APPROVER = "auto-approval"

# Keywords (lower-case) that place a receipt in a category
CATEGORY_KEYWORDS: Dict[str, tuple] = {
    "Kontorsmaterial": ("office", "kontor", "paper", "papper", "printer", "skrivare", "staples", "depot"),
    "Måltider": ("lunch", "dinner", "middag", "restaurant", "restaurang", "cafe", "fika", "meal"),
    "Resa": ("taxi", "uber", "sj", "train", "tåg", "flight", "flyg", "hotel", "hotell", "parking"),
    "Telefon och Internet": ("telia", "tele2", "telenor", "phone", "telefon", "internet", "bredband"),
    "Programvara": ("software", "programvara", "license", "licens", "adobe", "microsoft", "github"),
    "Marknadsföring": ("marketing", "marknadsföring", "ads", "annons", "google ads", "facebook"),
    "Utbildning": ("course", "kurs", "training", "utbildning", "conference", "konferens"),
    "Hyra och Lokaler": ("rent", "hyra", "lokal", "office space"),
    "Försäkringar": ("insurance", "försäkring"),
    "Revisor och Juridik": ("accountant", "revisor", "lawyer", "advokat", "juridik", "legal"),
}

STATUS_KEYWORDS = (
    ("pending", ("pending", "väntande", "awaiting", "unapproved")),
    ("approved", ("approved", "godkända", "godkänd")),
    ("rejected", ("rejected", "avvisade", "avvisad")),
    ("reimbursed", ("reimbursed", "utbetalda")),
)


def guess_category(*texts: Optional[str]) -> Optional[str]:
    haystack = " ".join(text.lower() for text in texts if text)
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in haystack for keyword in keywords):
            return category
    return None


def _status_filter(text: str) -> Optional[str]:
    for status, keywords in STATUS_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return status
    return None


def _receipt_row(receipt: models.Receipt) -> dict:
    return {
        "id": receipt.id,
        "receipt_number": receipt.receipt_number,
        "vendor_name": receipt.vendor_name,
        "amount": receipt.amount,
        "tax_amount": receipt.tax_amount,
        "currency": receipt.currency,
        "receipt_date": receipt.receipt_date,
        "category": receipt.category,
        "status": receipt.status,
        "attachment_count": receipt.attachment_count or 0,
    }


class ReceiptsAgent(BaseAgent):
    """Handles receipts (kvitton) submitted as business expenses."""

    name = "Receipts Agent"
    type = AgentType.RECEIPTS
    capabilities = [
        "Receipt registration",
        "Photo upload guidance",
        "Automatic approval",
        "Expense categorization",
        "VAT extraction",
        "Expense analysis",
    ]
    operation_rules = (
        OperationRule(("create", "new receipt", "add receipt", "register", "registrera"), "create"),
        OperationRule(("upload", "photo", "scan", "image", "foto", "bild"), "upload"),
        OperationRule(("review", "granska"), "approve"),
        OperationRule(("show", "list", "view", "display", "find", "visa"), "view"),
        OperationRule(("approve", "godkänn"), "approve"),
        OperationRule(("categorize", "categorise", "kategorisera", "classify"), "categorize"),
        OperationRule(("analy", "spending", "trend", "summary", "report"), "analyze"),
    )
    default_operation = "overview"
    error_messages = {
        "create": "Fel vid registrering av kvitto",
        "view": "Fel vid hämtning av kvitton",
        "approve": "Fel vid godkännande av kvitton",
        "categorize": "Fel vid kategorisering av kvitton",
        "analyze": "Fel vid analys av utgifter",
        "upload": "Fel vid hantering av uppladdning",
        "overview": "Fel vid skapande av kvittoöversikt",
    }

    def operations(self):
        return {
            "create": self._create_receipt,
            "view": self._view_receipts,
            "approve": self._approve_receipts,
            "categorize": self._categorize_receipts,
            "analyze": self._analyze_expenses,
            "upload": self._upload_guidance,
            "overview": self._general_overview,
        }

    async def _category_rates(self) -> Dict[str, float]:
        categories = (await self.db.execute(select(models.ReceiptCategory))).scalars().all()
        return {category.name: rate_from_percent(category.default_tax_rate) for category in categories}

    async def _create_receipt(self, task: AgentTask) -> AgentResponse:
        text = task.input.get("user_message") or task.description
        amount = task.input.get("amount") or extract_amount(text)
        if not amount:
            return AgentResponse(
                success=False,
                message="Kunde inte hitta något belopp. Ange t.ex. \"nytt kvitto från Office Depot 450 kr\".",
            )

        vendor = extract_vendor(text) or UNKNOWN_VENDOR
        category = guess_category(text, vendor if vendor != UNKNOWN_VENDOR else None)
        rates = await self._category_rates()
        rate = rates.get(category, rate_from_percent(None))
        tax_amount = vat_from_gross(amount, rate)

        last_number = (await self.db.execute(
            select(models.Receipt.receipt_number)
            .order_by(models.Receipt.created_at.desc(), models.Receipt.id.desc())
            .limit(1)
        )).scalar()

        receipt = models.Receipt(
            receipt_number=next_sequence_number(last_number, RECEIPT_PREFIX),
            vendor_name=vendor,
            amount=amount,
            currency=CURRENCY,
            receipt_date=date.today(),
            category=category,
            description=text[:500],
            tax_amount=tax_amount,
            status="pending",
            submitted_by="chat",
        )
        self.db.add(receipt)
        await self.db.commit()
        await self.db.refresh(receipt)
        logger.info(f"[ReceiptsAgent] Registered {receipt.receipt_number}: {vendor} {amount}")

        auto = is_auto_approvable(amount, category, vendor)
        message = "## 🧾 Kvitto registrerat\n\n"
        message += f"**Kvittonummer:** {receipt.receipt_number}\n"
        message += f"**Leverantör:** {vendor}\n"
        message += f"**Belopp:** {format_sek(amount, 2)}\n"
        message += f"**Moms ({rate * 100:.0f}%):** {format_sek(tax_amount, 2)}\n"
        message += f"**Kategori:** {category or 'Ej kategoriserad'}\n"

        return AgentResponse(
            success=True,
            data={"receipt": _receipt_row(receipt), "vat_rate": rate, "auto_approvable": auto},
            message=message,
            insights=self._compact([
                f"Moms {format_sek(tax_amount, 2)} kan dras av" if category else None,
                "Kvittot kan godkännas automatiskt" if auto else "Kvittot kräver manuell granskning",
            ]),
            suggestions=self._compact([
                "📸 Ladda upp en bild på kvittot",
                "🏷️ Ange kategori" if not category else None,
                "🏪 Ange leverantör" if vendor == UNKNOWN_VENDOR else None,
            ]),
        )

    async def _view_receipts(self, task: AgentTask) -> AgentResponse:
        text = (task.input.get("user_message") or task.description).lower()
        status = _status_filter(text)
        category = next((name for name in CATEGORY_KEYWORDS if name.lower() in text), None)
        vendor = extract_vendor(task.input.get("user_message") or "")

        stmt = select(models.Receipt)
        if status:
            stmt = stmt.where(models.Receipt.status == status)
        if category:
            stmt = stmt.where(models.Receipt.category == category)
        if vendor:
            stmt = stmt.where(models.Receipt.vendor_name.ilike(f"%{vendor}%"))
        receipts = (await self.db.execute(
            stmt.order_by(models.Receipt.receipt_date.desc(), models.Receipt.id.desc()).limit(VIEW_LIMIT)
        )).scalars().all()

        filters = {"status": status, "category": category, "vendor": vendor}
        logger.info(f"[ReceiptsAgent] Listing receipts with filters {filters}: {len(receipts)} found")

        if not receipts:
            return AgentResponse(
                success=True,
                data={"receipts": [], "filters": filters, "total_amount": 0.0},
                message="Inga kvitton matchade sökningen.",
                insights=["Inga kvitton att visa"],
                suggestions=["Registrera ett nytt kvitto", "Ändra filtret"],
            )

        total = sum(receipt.amount for receipt in receipts)
        message = f"## 🧾 Kvitton ({len(receipts)} st)\n\n"
        for receipt in receipts:
            icon = {"approved": "✅", "rejected": "❌", "reimbursed": "💸"}.get(receipt.status, "🟡")
            message += (
                f"{icon} **{receipt.receipt_number}** - {receipt.vendor_name} "
                f"{format_sek(receipt.amount, 2)} ({receipt.category or 'Ej kategoriserad'}, "
                f"{format_date(receipt.receipt_date)})\n"
            )
        message += f"\n**Totalt:** {format_sek(total, 2)}"

        missing_photos = sum(1 for receipt in receipts if not receipt.attachment_count)
        return AgentResponse(
            success=True,
            data={"receipts": [_receipt_row(r) for r in receipts], "filters": filters, "total_amount": total},
            message=message,
            insights=self._compact([
                f"{len(receipts)} kvitton, totalt {format_sek(total)}",
                f"{missing_photos} kvitton saknar bild" if missing_photos else None,
            ]),
            suggestions=self._compact([
                "Kör automatiskt godkännande" if status == "pending" else None,
                "Ladda upp bilder för kvitton som saknar underlag" if missing_photos else None,
            ]),
        )

    async def _approve_receipts(self, task: AgentTask) -> AgentResponse:
        pending = (await self.db.execute(
            select(models.Receipt).where(models.Receipt.status == "pending").order_by(models.Receipt.id)
        )).scalars().all()

        approved: List[dict] = []
        manual_review: List[dict] = []
        today = date.today()
        for receipt in pending:
            if is_auto_approvable(receipt.amount, receipt.category, receipt.vendor_name, AUTO_APPROVE_LIMIT):
                receipt.status = "approved"
                receipt.approved_by = AUTO_APPROVER
                receipt.approval_date = today
                approved.append(_receipt_row(receipt))
            else:
                manual_review.append({
                    **_receipt_row(receipt),
                    "reason": manual_review_reason(receipt.amount, AUTO_APPROVE_LIMIT),
                })
        await self.db.commit()
        logger.info(f"[ReceiptsAgent] Auto-approved {len(approved)}, left {len(manual_review)} for review")

        message = "## ✅ Godkännande av kvitton\n\n"
        message += f"• **Automatiskt godkända:** {len(approved)} st ({format_sek(sum(r['amount'] for r in approved), 2)})\n"
        message += f"• **Kräver manuell granskning:** {len(manual_review)} st\n"
        if manual_review:
            message += "\n### 🔍 Manuell granskning\n"
            for row in manual_review:
                reason = (
                    f"belopp över {format_sek(AUTO_APPROVE_LIMIT)}"
                    if row["reason"] == "amount_too_high" else "ofullständig information"
                )
                message += f"• **{row['receipt_number']}** - {row['vendor_name']} {format_sek(row['amount'], 2)} ({reason})\n"

        return AgentResponse(
            success=True,
            data={
                "approved": approved,
                "manual_review": manual_review,
                "auto_approve_limit": AUTO_APPROVE_LIMIT,
            },
            message=message,
            insights=[
                f"{len(approved)} kvitton godkändes automatiskt",
                f"{len(manual_review)} kvitton väntar på granskning",
            ],
            suggestions=self._compact([
                "Granska kvitton över beloppsgränsen" if any(r["reason"] == "amount_too_high" for r in manual_review) else None,
                "Komplettera kategori och leverantör" if any(r["reason"] == "incomplete_information" for r in manual_review) else None,
            ]),
        )

    async def _categorize_receipts(self, task: AgentTask) -> AgentResponse:
        receipts = (await self.db.execute(
            select(models.Receipt).where((models.Receipt.category.is_(None)) | (models.Receipt.category == ""))
        )).scalars().all()
        rates = await self._category_rates()

        categorized, unresolved = [], []
        for receipt in receipts:
            category = guess_category(receipt.vendor_name, receipt.description)
            if category is None:
                unresolved.append(receipt.receipt_number)
                continue
            receipt.category = category
            receipt.tax_amount = vat_from_gross(receipt.amount, rates.get(category, rate_from_percent(None)))
            categorized.append({"receipt_number": receipt.receipt_number, "category": category})
        await self.db.commit()

        message = "## 🏷️ Kategorisering av kvitton\n\n"
        for row in categorized:
            message += f"• **{row['receipt_number']}** → {row['category']}\n"
        if unresolved:
            message += f"\n⚠️ {len(unresolved)} kvitton kunde inte kategoriseras automatiskt\n"
        if not receipts:
            message += "Alla kvitton är redan kategoriserade. 🎉\n"

        return AgentResponse(
            success=True,
            data={"categorized": categorized, "unresolved": unresolved},
            message=message,
            insights=[f"{len(categorized)} kvitton kategoriserades", f"{len(unresolved)} kvar att hantera"],
            suggestions=["Granska föreslagna kategorier"] if categorized else [],
        )

    async def _analyze_expenses(self, task: AgentTask) -> AgentResponse:
        since = date.today() - timedelta(days=30)
        receipts = (await self.db.execute(
            select(models.Receipt).where(models.Receipt.receipt_date >= since)
        )).scalars().all()
        deductible = {
            category.name
            for category in (await self.db.execute(select(models.ReceiptCategory))).scalars().all()
            if category.tax_deductible
        }

        by_category: Dict[str, float] = defaultdict(float)
        for receipt in receipts:
            by_category[receipt.category or "Ej kategoriserad"] += receipt.amount
        total = sum(by_category.values())
        vat_total = sum(receipt.tax_amount or 0 for receipt in receipts)
        deductible_total = sum(r.amount for r in receipts if r.category in deductible)
        with_attachment = sum(1 for r in receipts if r.attachment_count)
        compliance = with_attachment / len(receipts) * 100 if receipts else 100.0
        top = sorted(by_category.items(), key=lambda item: item[1], reverse=True)

        message = "## 📊 Utgiftsanalys - senaste 30 dagarna\n\n"
        message += f"• **Totala utgifter:** {format_sek(total)}\n"
        message += f"• **Ingående moms:** {format_sek(vat_total)}\n"
        message += f"• **Avdragsgilla utgifter:** {format_sek(deductible_total)}\n"
        message += f"• **Underlag bifogat:** {compliance:.0f}%\n"
        if top:
            message += "\n### Per kategori\n"
            for category, amount in top:
                share = amount / total * 100 if total else 0
                message += f"• **{category}:** {format_sek(amount)} ({share:.0f}%)\n"

        return AgentResponse(
            success=True,
            data={
                "period_days": 30,
                "receipt_count": len(receipts),
                "total_expenses": total,
                "vat_total": vat_total,
                "deductible_total": deductible_total,
                "by_category": dict(by_category),
                "attachment_compliance": compliance,
            },
            message=message,
            insights=self._compact([
                f"Största kategori: {top[0][0]}" if top else None,
                f"{len(receipts) - with_attachment} kvitton saknar underlag" if with_attachment < len(receipts) else None,
            ]),
            suggestions=self._compact([
                "Ladda upp saknade kvittobilder" if compliance < 100 else None,
                "Sätt budget per kategori",
            ]),
        )

    async def _upload_guidance(self, task: AgentTask) -> AgentResponse:
        reference = extract_document_number(task.input.get("user_message") or task.description)
        receipt = None
        if reference and reference.startswith(RECEIPT_PREFIX):
            receipt = (await self.db.execute(
                select(models.Receipt).where(models.Receipt.receipt_number == reference)
            )).scalars().first()

        message = "## 📸 Ladda upp kvitto\n\n"
        message += "1. Fotografera hela kvittot i bra ljus\n"
        message += "2. Kontrollera att datum, belopp och moms syns\n"
        message += "3. Ladda upp bilden (JPG, PNG eller PDF)\n"
        message += "4. Koppla bilden till kvittonumret\n"
        if receipt is not None:
            message += (
                f"\n**{receipt.receipt_number}** ({receipt.vendor_name}, {format_sek(receipt.amount, 2)}) "
                f"har {receipt.attachment_count or 0} bifogade filer.\n"
            )
        elif reference:
            message += f"\n⚠️ Kvittot {reference} hittades inte.\n"

        return AgentResponse(
            success=True,
            data={
                "accepted_formats": ["jpg", "png", "pdf"],
                "receipt": _receipt_row(receipt) if receipt is not None else None,
            },
            message=message,
            insights=["Bokföringslagen kräver att underlag sparas i sju år"],
            suggestions=["Ange kvittonummer (REC-ÅÅÅÅ-NNN) för att koppla bilden"],
        )

    async def _general_overview(self, task: AgentTask) -> AgentResponse:
        receipts = (await self.db.execute(select(models.Receipt))).scalars().all()
        month_start = date.today().replace(day=1)

        counts: Dict[str, int] = defaultdict(int)
        for receipt in receipts:
            counts[receipt.status or "pending"] += 1
        pending_amount = sum(r.amount for r in receipts if r.status == "pending")
        month_total = sum(r.amount for r in receipts if r.receipt_date and r.receipt_date >= month_start)

        message = "## 🧾 Kvittoöversikt\n\n"
        message += f"• **Kvitton totalt:** {len(receipts)} st\n"
        message += f"• 🟡 **Väntar på godkännande:** {counts['pending']} st ({format_sek(pending_amount)})\n"
        message += f"• ✅ **Godkända:** {counts['approved']} st\n"
        message += f"• **Utgifter denna månad:** {format_sek(month_total)}\n"

        return AgentResponse(
            success=True,
            data={
                "total_receipts": len(receipts),
                "status_counts": dict(counts),
                "pending_amount": pending_amount,
                "month_total": month_total,
            },
            message=message,
            insights=[f"{counts['pending']} kvitton väntar på godkännande"],
            suggestions=self._compact([
                "Kör automatiskt godkännande" if counts["pending"] else None,
                "Analysera utgifter senaste 30 dagarna",
            ]),
        )
