"""
Test the receipts agent: registration, listing, auto-approval and expense analysis.
"""

import itertools
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from cfo_assistant import models
from cfo_assistant.config import AUTO_APPROVE_LIMIT, DOCUMENT_YEAR
from cfo_assistant.schemas.agents import AgentType
from cfo_assistant.services.agents import CFOOrchestrator
from cfo_assistant.services.agents.domain import ReceiptsAgent
from cfo_assistant.services.agents.domain.receipts import AUTO_APPROVER, guess_category
from cfo_assistant.services.finance_rules import UNKNOWN_VENDOR

_numbers = itertools.count(1)


def describe(message):
    return f'Handling receipt request: "{message}"'


async def add_receipt(db, amount, category="Kontorsmaterial", vendor="Office Depot", status="pending",
                      days_ago=0, **extra):
    receipt = models.Receipt(
        receipt_number=extra.pop("receipt_number", f"REC-2024-{next(_numbers):03d}"),
        vendor_name=vendor,
        amount=amount,
        receipt_date=date.today() - timedelta(days=days_ago),
        category=category,
        status=status,
        **extra,
    )
    db.add(receipt)
    await db.commit()
    return receipt


class TestGuessCategory:
    @pytest.mark.parametrize("text,expected", [
        ("Office Depot", "Kontorsmaterial"),
        ("lunch med kund", "Måltider"),
        ("Taxi Stockholm", "Resa"),
        ("Telia faktura", "Telefon och Internet"),
        ("Adobe license", "Programvara"),
    ])
    def test_keyword_categories(self, text, expected):
        assert guess_category(text) == expected

    def test_no_match(self):
        assert guess_category("Mystery AB", None) is None


class TestOperationRouting:
    @pytest.mark.parametrize("message,operation", [
        ("review pending receipts", "approve"),
        ("granska kvitton", "approve"),
        ("show approved receipts", "view"),
        ("approve pending receipts", "approve"),
        ("new receipt from Office Depot 450 kr", "create"),
    ])
    def test_determine_operation(self, message, operation):
        assert ReceiptsAgent(db=None).determine_operation(describe(message)) == operation


class TestCreateReceipt:
    @pytest.mark.asyncio
    async def test_meal_receipt_uses_category_rate(self, db, make_task):
        message = "new receipt from Restaurang Prinsen lunch 560 kr"
        agent = ReceiptsAgent(db)

        response = await agent.process_task(make_task(AgentType.RECEIPTS, describe(message), user_message=message))

        assert response.success
        receipt = response.data["receipt"]
        assert receipt["receipt_number"] == f"REC-{DOCUMENT_YEAR}-001"
        assert receipt["vendor_name"] == "Restaurang Prinsen"
        assert receipt["category"] == "Måltider"
        assert response.data["vat_rate"] == pytest.approx(0.12)
        # VAT is carved out of the gross amount
        assert receipt["tax_amount"] == 60.0
        assert receipt["status"] == "pending"

    @pytest.mark.asyncio
    async def test_unknown_vendor_is_not_auto_approvable(self, db, make_task):
        message = "add receipt for printer paper 300 kr"
        agent = ReceiptsAgent(db)

        response = await agent.process_task(make_task(AgentType.RECEIPTS, describe(message), user_message=message))

        assert response.data["receipt"]["vendor_name"] == UNKNOWN_VENDOR
        assert response.data["receipt"]["category"] == "Kontorsmaterial"
        assert response.data["auto_approvable"] is False

    @pytest.mark.asyncio
    async def test_decimal_comma_amount_is_not_auto_approvable(self, db, make_task):
        message = "new receipt from Office Depot 1450,50 kr"

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe(message), user_message=message)
        )

        receipt = response.data["receipt"]
        assert receipt["amount"] == 1450.50
        assert receipt["category"] == "Kontorsmaterial"
        assert receipt["tax_amount"] == 290.10
        assert response.data["auto_approvable"] is False

    @pytest.mark.asyncio
    async def test_missing_amount_fails(self, db, make_task):
        message = "new receipt from Office Depot"

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe(message), user_message=message)
        )

        assert response.success is False
        assert response.data is None
        assert (await db.execute(select(models.Receipt))).scalars().all() == []


class TestViewReceipts:
    @pytest.mark.asyncio
    async def test_scenario_pending_receipts(self, db):
        await add_receipt(db, 450.0)
        await add_receipt(db, 1200.0, category="Resa", vendor="SJ")
        await add_receipt(db, 300.0, status="approved")
        orchestrator = CFOOrchestrator(db)

        result = await orchestrator.process_message("show me all receipts pending approval")

        assert result["intent"] == "receipts"
        activity = result["agent_activities"][0]
        assert activity["agent"] == "Receipts Agent"
        receipts = activity["result"]["receipts"]
        assert len(receipts) == 2
        assert all(row["status"] == "pending" for row in receipts)
        assert activity["result"]["total_amount"] == 1650.0

    @pytest.mark.asyncio
    async def test_category_filter(self, db, make_task):
        await add_receipt(db, 450.0)
        await add_receipt(db, 220.0, category="Måltider", vendor="Espresso House")
        message = "list måltider receipts"

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe(message), user_message=message)
        )

        assert [row["vendor_name"] for row in response.data["receipts"]] == ["Espresso House"]
        assert response.data["filters"]["category"] == "Måltider"

    @pytest.mark.asyncio
    async def test_empty_result(self, db, make_task):
        message = "show rejected receipts"

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe(message), user_message=message)
        )

        assert response.success
        assert response.data["receipts"] == []
        assert response.data["filters"]["status"] == "rejected"


class TestApproveReceipts:
    @pytest.mark.asyncio
    async def test_scenario_threshold_is_inclusive(self, db, make_task):
        at_limit = await add_receipt(db, AUTO_APPROVE_LIMIT)
        above_limit = await add_receipt(db, AUTO_APPROVE_LIMIT + 0.01)
        agent = ReceiptsAgent(db)

        response = await agent.process_task(make_task(AgentType.RECEIPTS, describe("approve pending receipts")))

        assert [row["receipt_number"] for row in response.data["approved"]] == [at_limit.receipt_number]
        assert [row["receipt_number"] for row in response.data["manual_review"]] == [above_limit.receipt_number]
        assert response.data["manual_review"][0]["reason"] == "amount_too_high"

        await db.refresh(at_limit)
        await db.refresh(above_limit)
        assert at_limit.status == "approved"
        assert at_limit.approved_by == AUTO_APPROVER
        assert at_limit.approval_date == date.today()
        assert above_limit.status == "pending"

    @pytest.mark.asyncio
    async def test_incomplete_receipts_need_review(self, db, make_task):
        await add_receipt(db, 200.0, category=None)
        await add_receipt(db, 200.0, vendor=UNKNOWN_VENDOR)
        await add_receipt(db, 200.0, status="rejected")

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe("godkänn kvitton"))
        )

        assert response.data["approved"] == []
        assert [row["reason"] for row in response.data["manual_review"]] == [
            "incomplete_information", "incomplete_information",
        ]


class TestCategorizeAndAnalyze:
    @pytest.mark.asyncio
    async def test_categorize_recomputes_vat(self, db, make_task):
        telia = await add_receipt(db, 500.0, category=None, vendor="Telia", tax_amount=0.0)
        await add_receipt(db, 80.0, category=None, vendor="Mystery AB")

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe("categorize receipts"))
        )

        assert response.data["categorized"] == [
            {"receipt_number": telia.receipt_number, "category": "Telefon och Internet"},
        ]
        assert len(response.data["unresolved"]) == 1
        await db.refresh(telia)
        assert telia.tax_amount == 100.0

    @pytest.mark.asyncio
    async def test_analyze_last_30_days(self, db, make_task):
        await add_receipt(db, 1250.0, tax_amount=250.0, attachment_count=1, days_ago=3)
        await add_receipt(db, 560.0, category="Måltider", vendor="Prinsen", tax_amount=60.0, days_ago=10)
        await add_receipt(db, 9000.0, tax_amount=1800.0, days_ago=45)

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe("analyze spending"))
        )

        data = response.data
        assert data["receipt_count"] == 2
        assert data["total_expenses"] == 1810.0
        assert data["vat_total"] == 310.0
        assert data["deductible_total"] == 1810.0
        assert data["by_category"] == {"Kontorsmaterial": 1250.0, "Måltider": 560.0}
        assert data["attachment_compliance"] == 50.0

    @pytest.mark.asyncio
    async def test_upload_links_existing_receipt(self, db, make_task):
        await add_receipt(db, 450.0, receipt_number="REC-2025-004", attachment_count=2)
        message = "upload photo for REC-2025-004"

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe(message), user_message=message)
        )

        assert response.data["receipt"]["receipt_number"] == "REC-2025-004"
        assert response.data["receipt"]["attachment_count"] == 2
        assert "jpg" in response.data["accepted_formats"]

    @pytest.mark.asyncio
    async def test_overview_counts_statuses(self, db, make_task):
        await add_receipt(db, 100.0)
        await add_receipt(db, 200.0)
        await add_receipt(db, 300.0, status="approved")

        response = await ReceiptsAgent(db).process_task(
            make_task(AgentType.RECEIPTS, describe("how many receipts do we have"))
        )

        assert response.data["total_receipts"] == 3
        assert response.data["status_counts"] == {"pending": 2, "approved": 1}
        assert response.data["pending_amount"] == 300.0
