"""Bookkeeping agent: categorisation, reconciliation and validation of transactions."""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from rapidfuzz import fuzz
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .... import models
from ....schemas.agents.task import AgentResponse, AgentTask, AgentType
from ...finance_rules import amount_due, is_outstanding, percent_change
from ..base import BaseAgent, OperationRule
from ..text import extract_amount, format_sek

logger = logging.getLogger(__name__)

CASH_ACCOUNT = "1000"
AUTO_CATEGORIZE_CONFIDENCE = 0.8
DUPLICATE_SIMILARITY = 80
TREND_DAYS = 60

# (keywords, account code, confidence). First match wins.
CATEGORIZATION_RULES: List[Tuple[Tuple[str, ...], str, float]] = [
    (("payment from", "betalning från", "invoice payment", "inbetalning"), "4100", 0.95),
    (("office", "kontor", "staples", "papper", "paper"), "6100", 0.9),
    (("google ads", "facebook", "linkedin", "marketing", "annons"), "6200", 0.9),
    (("taxi", "uber", "flight", "flyg", "hotel", "hotell", "sj "), "6300", 0.85),
    (("telia", "tele2", "vattenfall", "electricity", "internet", "bredband"), "6400", 0.85),
    (("consult", "konsult", "accountant", "revisor", "lawyer", "advokat"), "6500", 0.8),
    (("lunch", "restaurant", "restaurang", "middag"), "6300", 0.7),
]


def suggest_account(description: str) -> Optional[Tuple[str, float]]:
    text = (description or "").lower()
    for keywords, account_code, confidence in CATEGORIZATION_RULES:
        if any(keyword in text for keyword in keywords):
            return account_code, confidence
    return None


def find_duplicates(transactions: List[models.Transaction]) -> List[Tuple[int, int]]:
    """Pairs of transaction ids with same date, same amount and similar descriptions."""
    groups: Dict[Tuple[date, float], List[models.Transaction]] = defaultdict(list)
    for txn in transactions:
        groups[(txn.transaction_date, round(txn.total_amount or 0, 2))].append(txn)

    pairs = []
    for group in groups.values():
        for i in range(len(group)):
            for j in range(i + 1, len(group)):
                similarity = fuzz.partial_ratio(
                    (group[i].description or "").lower(),
                    (group[j].description or "").lower(),
                )
                if similarity > DUPLICATE_SIMILARITY:
                    pairs.append((group[i].id, group[j].id))
    return pairs


class BookkeepingAgent(BaseAgent):
    """Keeps the ledger in order.

    Operations: categorize, reconcile, validate, analyze and a general
    overview of receivables and expenses.
    """

    name = "Bookkeeping Agent"
    type = AgentType.BOOKKEEPING
    capabilities = [
        "Transaction categorization",
        "Account reconciliation",
        "Data validation",
        "Duplicate detection",
        "Expense trend analysis",
        "Chart of accounts management",
    ]
    # Task descriptions start with "Analyzing ...", so the analyze rule avoids "analy"
    operation_rules = (
        OperationRule(("categoriz", "categoris", "kategoris", "classify"), "categorize"),
        OperationRule(("reconcil", "avstämning", "bank balance", "stäm av"), "reconcile"),
        OperationRule(("validat", "verify", "duplicate", "dubblett", "errors"), "validate"),
        OperationRule(("trend", "pattern", "spending", "expense analysis", "utgiftsanalys"), "analyze"),
    )
    default_operation = "general"
    error_messages = {
        "categorize": "Fel vid kategorisering av transaktioner",
        "reconcile": "Fel vid avstämning",
        "validate": "Fel vid validering av bokföringsdata",
        "analyze": "Fel vid analys av utgifter",
        "general": "Fel vid bokföringsanalys",
    }

    def operations(self):
        return {
            "categorize": self._categorize_transactions,
            "reconcile": self._reconcile_accounts,
            "validate": self._validate_data,
            "analyze": self._analyze_expenses,
            "general": self._general_analysis,
        }

    async def _accounts_by_code(self) -> Dict[str, models.Account]:
        accounts = (await self.db.execute(
            select(models.Account).where(models.Account.is_active.is_(True))
        )).scalars().all()
        return {account.account_code: account for account in accounts}

    async def _categorize_transactions(self, task: AgentTask) -> AgentResponse:
        transactions = (await self.db.execute(
            select(models.Transaction)
            .options(selectinload(models.Transaction.line_items))
            .order_by(models.Transaction.transaction_date.desc())
        )).scalars().all()
        uncategorized = [txn for txn in transactions if not txn.line_items]
        accounts = await self._accounts_by_code()
        cash = accounts.get(CASH_ACCOUNT)

        categorized, flagged = [], []
        for txn in uncategorized:
            suggestion = suggest_account(txn.description)
            account = accounts.get(suggestion[0]) if suggestion else None
            confidence = suggestion[1] if suggestion else 0.0
            row = {
                "transaction_id": txn.id,
                "description": txn.description,
                "amount": txn.total_amount,
                "account_code": account.account_code if account else None,
                "account_name": account.account_name if account else None,
                "confidence": confidence,
            }
            if account is None or cash is None or confidence <= AUTO_CATEGORIZE_CONFIDENCE:
                flagged.append(row)
                continue

            amount = abs(txn.total_amount)
            income = account.account_type == "Revenue"
            debit_account, credit_account = (cash, account) if income else (account, cash)
            txn.line_items.append(models.TransactionLineItem(
                account_id=debit_account.id, description=txn.description, debit_amount=amount, credit_amount=0.0,
            ))
            txn.line_items.append(models.TransactionLineItem(
                account_id=credit_account.id, description=txn.description, debit_amount=0.0, credit_amount=amount,
            ))
            categorized.append(row)
        await self.db.commit()
        logger.info(f"[BookkeepingAgent] Categorized {len(categorized)}, flagged {len(flagged)}")

        message = "## 🏷️ Kategorisering av transaktioner\n\n"
        if not uncategorized:
            message += "Alla transaktioner är redan konterade. 🎉\n"
        for row in categorized:
            message += f"✅ {row['description']} → **{row['account_code']} {row['account_name']}** ({row['confidence']:.0%})\n"
        for row in flagged:
            target = f"{row['account_code']} {row['account_name']}" if row["account_code"] else "okänt konto"
            message += f"🔍 {row['description']} → {target} ({row['confidence']:.0%}, kräver granskning)\n"

        return AgentResponse(
            success=True,
            data={"categorized": categorized, "flagged_for_review": flagged},
            message=message,
            insights=[
                f"{len(categorized)} transaktioner konterades automatiskt",
                f"{len(flagged)} transaktioner behöver granskas",
            ],
            suggestions=self._compact([
                "Granska flaggade transaktioner" if flagged else None,
                "Lägg till egna konteringsregler för återkommande leverantörer",
            ]),
        )

    async def _reconcile_accounts(self, task: AgentTask) -> AgentResponse:
        accounts = await self._accounts_by_code()
        cash = accounts.get(CASH_ACCOUNT)
        if cash is None:
            return AgentResponse(success=False, message=f"Kassakonto {CASH_ACCOUNT} saknas i kontoplanen")

        lines = (await self.db.execute(
            select(models.TransactionLineItem)
            .options(selectinload(models.TransactionLineItem.transaction))
            .where(models.TransactionLineItem.account_id == cash.id)
        )).scalars().all()
        book_balance = sum((line.debit_amount or 0) - (line.credit_amount or 0) for line in lines)

        open_items = [
            {
                "transaction_id": line.transaction.id,
                "date": line.transaction.transaction_date,
                "description": line.transaction.description,
                "amount": (line.debit_amount or 0) - (line.credit_amount or 0),
            }
            for line in lines
            if line.transaction.status == "Posted"
        ]

        bank_balance = task.input.get("amount") or extract_amount(task.input.get("user_message") or "")
        difference = bank_balance - book_balance if bank_balance is not None else None

        message = f"## 🏦 Avstämning konto {cash.account_code} {cash.account_name}\n\n"
        message += f"• **Bokfört saldo:** {format_sek(book_balance, 2)}\n"
        if bank_balance is not None:
            message += f"• **Saldo enligt bank:** {format_sek(bank_balance, 2)}\n"
            message += f"• **Differens:** {format_sek(difference, 2)}\n"
        message += f"• **Oavstämda poster:** {len(open_items)} st\n"

        return AgentResponse(
            success=True,
            data={
                "account_code": cash.account_code,
                "book_balance": book_balance,
                "bank_balance": bank_balance,
                "difference": difference,
                "open_items": open_items,
            },
            message=message,
            insights=self._compact([
                f"{len(open_items)} poster väntar på avstämning",
                "Saldot stämmer med banken" if difference is not None and abs(difference) < 0.01 else None,
            ]),
            suggestions=["Importera kontoutdrag för att stämma av öppna poster"],
        )

    async def _validate_data(self, task: AgentTask) -> AgentResponse:
        transactions = (await self.db.execute(
            select(models.Transaction).options(selectinload(models.Transaction.line_items))
        )).scalars().all()

        missing_fields, unbalanced = [], []
        for txn in transactions:
            if not (txn.description or "").strip() or not txn.total_amount:
                missing_fields.append(txn.id)
            if txn.line_items:
                debits = sum(line.debit_amount or 0 for line in txn.line_items)
                credits = sum(line.credit_amount or 0 for line in txn.line_items)
                if abs(debits - credits) > 0.01:
                    unbalanced.append({"transaction_id": txn.id, "debit": debits, "credit": credits})
        duplicates = find_duplicates(transactions)

        affected = set(missing_fields) | {row["transaction_id"] for row in unbalanced}
        affected |= {txn_id for pair in duplicates for txn_id in pair}
        quality_score = 100.0 * (1 - len(affected) / len(transactions)) if transactions else 100.0
        logger.info(f"[BookkeepingAgent] Validation score {quality_score:.1f} over {len(transactions)} transactions")

        message = "## 🔎 Validering av bokföringsdata\n\n"
        message += f"• **Kontrollerade transaktioner:** {len(transactions)} st\n"
        message += f"• **Saknade uppgifter:** {len(missing_fields)} st\n"
        message += f"• **Obalanserade verifikationer:** {len(unbalanced)} st\n"
        message += f"• **Möjliga dubbletter:** {len(duplicates)} par\n"
        message += f"• **Datakvalitet:** {quality_score:.0f}/100\n"

        return AgentResponse(
            success=True,
            data={
                "checked": len(transactions),
                "missing_fields": missing_fields,
                "unbalanced": unbalanced,
                "duplicates": [list(pair) for pair in duplicates],
                "quality_score": quality_score,
            },
            message=message,
            insights=[f"Datakvalitet {quality_score:.0f}/100"],
            suggestions=self._compact([
                "Rätta obalanserade verifikationer" if unbalanced else None,
                "Granska möjliga dubbletter" if duplicates else None,
                "Komplettera saknade uppgifter" if missing_fields else None,
            ]),
        )

    async def _expense_totals(self, start: date, end: date) -> Dict[str, float]:
        rows = (await self.db.execute(
            select(models.Account.account_name, models.TransactionLineItem.debit_amount)
            .join(models.TransactionLineItem, models.TransactionLineItem.account_id == models.Account.id)
            .join(models.Transaction, models.TransactionLineItem.transaction_id == models.Transaction.id)
            .where(
                models.Account.account_type == "Expense",
                models.Transaction.transaction_date >= start,
                models.Transaction.transaction_date < end,
            )
        )).all()
        totals: Dict[str, float] = defaultdict(float)
        for account_name, debit in rows:
            totals[account_name] += debit or 0
        return dict(totals)

    async def _analyze_expenses(self, task: AgentTask) -> AgentResponse:
        today = date.today()
        half = TREND_DAYS // 2
        recent = await self._expense_totals(today - timedelta(days=half), today + timedelta(days=1))
        earlier = await self._expense_totals(today - timedelta(days=TREND_DAYS), today - timedelta(days=half))

        recent_total = sum(recent.values())
        earlier_total = sum(earlier.values())
        change = percent_change(recent_total, earlier_total)
        by_account = sorted(
            (
                {
                    "account": name,
                    "recent": recent.get(name, 0.0),
                    "previous": earlier.get(name, 0.0),
                    "change_pct": percent_change(recent.get(name, 0.0), earlier.get(name, 0.0)),
                }
                for name in set(recent) | set(earlier)
            ),
            key=lambda row: row["recent"],
            reverse=True,
        )

        message = f"## 📉 Utgiftstrend - senaste {TREND_DAYS} dagarna\n\n"
        message += f"• **Senaste {half} dagarna:** {format_sek(recent_total)}\n"
        message += f"• **Föregående {half} dagar:** {format_sek(earlier_total)}\n"
        message += f"• **Förändring:** {change:+.1f}%\n"
        for row in by_account[:5]:
            message += f"• {row['account']}: {format_sek(row['recent'])} ({row['change_pct']:+.0f}%)\n"

        return AgentResponse(
            success=True,
            data={
                "recent_total": recent_total,
                "previous_total": earlier_total,
                "change_pct": change,
                "by_account": by_account,
            },
            message=message,
            insights=self._compact([
                f"Utgifterna har ökat med {change:.0f}%" if change > 10 else None,
                f"Utgifterna har minskat med {abs(change):.0f}%" if change < -10 else None,
                f"Största kostnad: {by_account[0]['account']}" if by_account else None,
            ]),
            suggestions=["Sätt budget för de största kostnadskontona"],
        )

    async def _general_analysis(self, task: AgentTask) -> AgentResponse:
        invoices = (await self.db.execute(select(models.Invoice))).scalars().all()
        receivables = sum(amount_due(inv.total_amount, inv.paid_amount) for inv in invoices if is_outstanding(inv.status))
        month_start = date.today().replace(day=1)
        month_expenses = sum((await self._expense_totals(month_start, date.today() + timedelta(days=1))).values())
        transaction_count = len((await self.db.execute(select(models.Transaction.id))).scalars().all())

        message = "## 📒 Bokföringsöversikt\n\n"
        message += f"• **Kundfordringar:** {format_sek(receivables)}\n"
        message += f"• **Kostnader denna månad:** {format_sek(month_expenses)}\n"
        message += f"• **Transaktioner i huvudboken:** {transaction_count} st\n"

        return AgentResponse(
            success=True,
            data={
                "accounts_receivable": receivables,
                "month_expenses": month_expenses,
                "transaction_count": transaction_count,
            },
            message=message,
            insights=[
                f"Kundfordringar: {format_sek(receivables)}",
                f"Kostnader denna månad: {format_sek(month_expenses)}",
            ],
            suggestions=[
                "Kategorisera nya transaktioner",
                "Stäm av bankkontot",
            ],
        )
