"""Reference data for a fresh database: chart of accounts, receipt categories, sample clients."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models

logger = logging.getLogger(__name__)

CHART_OF_ACCOUNTS = [
    # (code, name, type)
    ("1000", "Cash and Bank Accounts", "Asset"),
    ("1200", "Accounts Receivable", "Asset"),
    ("1500", "Office Equipment", "Asset"),
    ("2000", "Accounts Payable", "Liability"),
    ("2100", "Credit Cards", "Liability"),
    ("3000", "Owner Equity", "Equity"),
    ("4000", "Revenue", "Revenue"),
    ("4100", "Service Revenue", "Revenue"),
    ("4200", "Product Sales", "Revenue"),
    ("5000", "Cost of Goods Sold", "Expense"),
    ("6000", "Operating Expenses", "Expense"),
    ("6100", "Office Supplies", "Expense"),
    ("6200", "Marketing & Advertising", "Expense"),
    ("6300", "Travel & Entertainment", "Expense"),
    ("6400", "Utilities", "Expense"),
    ("6500", "Professional Services", "Expense"),
]

RECEIPT_CATEGORIES = [
    # (name, description, tax_deductible, default_tax_rate %)
    ("Kontorsmaterial", "Office supplies and equipment", True, 25.0),
    ("Måltider", "Business meals and entertainment", True, 12.0),
    ("Resa", "Travel expenses including transportation and accommodation", True, 25.0),
    ("Telefon och Internet", "Phone and internet services", True, 25.0),
    ("Programvara", "Software licenses and subscriptions", True, 25.0),
    ("Marknadsföring", "Marketing and advertising expenses", True, 25.0),
    ("Utbildning", "Training and education costs", True, 25.0),
    ("Hyra och Lokaler", "Rent and facility costs", True, 25.0),
    ("Försäkringar", "Business insurance premiums", True, 25.0),
    ("Revisor och Juridik", "Accounting and legal services", True, 25.0),
]

SAMPLE_CLIENTS = [
    {"name": "Joakim Svensson", "email": "joakim.svensson@techab.se", "company": "Tech Solutions AB", "city": "Stockholm", "payment_terms": 30},
    {"name": "Anna Lindberg", "email": "anna.lindberg@designstudio.se", "company": "Creative Design Studio", "city": "Göteborg", "payment_terms": 14},
    {"name": "Erik Andersson", "email": "erik.andersson@konsult.se", "company": "Andersson Konsult AB", "city": "Malmö", "payment_terms": 30},
    {"name": "Sofia Karlsson", "email": "sofia.karlsson@ehandel.se", "company": "E-handel Nordic", "city": "Uppsala", "payment_terms": 21},
    {"name": "Magnus Olsson", "email": "magnus.olsson@bygg.se", "company": "Olsson Bygg & Anläggning", "city": "Västerås", "payment_terms": 30},
    {"name": "Emma Nilsson", "email": "emma.nilsson@marketing.se", "company": "Digital Marketing Pro", "city": "Örebro", "payment_terms": 14},
]


async def seed_reference_data(db: AsyncSession, include_clients: bool = True) -> None:
    """Insert any missing reference rows. Safe to run repeatedly."""
    existing_codes = set((await db.execute(select(models.Account.account_code))).scalars().all())
    for code, name, account_type in CHART_OF_ACCOUNTS:
        if code not in existing_codes:
            db.add(models.Account(account_code=code, account_name=name, account_type=account_type))

    existing_categories = set((await db.execute(select(models.ReceiptCategory.name))).scalars().all())
    for name, description, deductible, rate in RECEIPT_CATEGORIES:
        if name not in existing_categories:
            db.add(models.ReceiptCategory(
                name=name,
                description=description,
                tax_deductible=deductible,
                default_tax_rate=rate,
            ))

    if include_clients:
        existing_emails = set((await db.execute(select(models.Client.email))).scalars().all())
        for client in SAMPLE_CLIENTS:
            if client["email"] not in existing_emails:
                db.add(models.Client(**client))

    await db.commit()
    logger.info("[Seed] Reference data ensured")
