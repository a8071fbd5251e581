from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, Date, ForeignKey, Boolean, DateTime, Text
from sqlalchemy.orm import relationship
from .database import Base

class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True, nullable=False)
    email = Column(String, unique=True, nullable=True)
    phone = Column(String, nullable=True)
    company = Column(String, nullable=True)
    city = Column(String, nullable=True)
    country = Column(String, default="Sverige")
    payment_terms = Column(Integer, default=30)  # days
    credit_limit = Column(Float, default=0.0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)
    invoices = relationship("Invoice", back_populates="client")
    recurring_bills = relationship("RecurringBilling", back_populates="client")

class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String, unique=True, index=True, nullable=False)  # INV-2025-001
    client_id = Column(Integer, ForeignKey("clients.id"), index=True)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    subtotal = Column(Float, nullable=False)
    tax_amount = Column(Float, default=0.0)
    total_amount = Column(Float, nullable=False)
    paid_amount = Column(Float, default=0.0)
    currency = Column(String, default="SEK")
    status = Column(String, default="draft", index=True)  # draft, sent, pending, paid, overdue, cancelled
    payment_terms = Column(Integer, default=30)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now, index=True)
    client = relationship("Client", back_populates="invoices")
    line_items = relationship("InvoiceLineItem", back_populates="invoice", cascade="all, delete-orphan")

class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), index=True)
    description = Column(Text, nullable=False)
    quantity = Column(Float, nullable=False, default=1.0)
    unit_price = Column(Float, nullable=False)
    line_total = Column(Float, nullable=False)
    invoice = relationship("Invoice", back_populates="line_items")

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    amount = Column(Float, nullable=False)
    payment_date = Column(Date, nullable=False, index=True)
    payment_method = Column(String, nullable=True)  # bank_transfer, card, swish, cash
    reference = Column(String, nullable=True)

class RecurringBilling(Base):
    __tablename__ = "recurring_billing"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"))
    template_name = Column(String, nullable=False)
    frequency = Column(String, nullable=False)  # Weekly, Monthly, Quarterly, Annually
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    next_billing_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True)
    client = relationship("Client", back_populates="recurring_bills")

class ReceiptCategory(Base):
    __tablename__ = "receipt_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True)
    description = Column(String, nullable=True)
    tax_deductible = Column(Boolean, default=True)
    default_tax_rate = Column(Float, default=25.0)  # percent

class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    receipt_number = Column(String, unique=True, index=True, nullable=False)  # REC-2025-001
    vendor_name = Column(String, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String, default="SEK")
    receipt_date = Column(Date, nullable=False, index=True)
    category = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    tax_amount = Column(Float, default=0.0)
    payment_method = Column(String, default="card")
    status = Column(String, default="pending", index=True)  # pending, approved, rejected, reimbursed
    submitted_by = Column(String, nullable=True)
    approved_by = Column(String, nullable=True)
    approval_date = Column(Date, nullable=True)
    attachment_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.now, index=True)

class Account(Base):
    __tablename__ = "chart_of_accounts"

    id = Column(Integer, primary_key=True, index=True)
    account_code = Column(String, unique=True, index=True)  # "6100"
    account_name = Column(String)
    account_type = Column(String)  # Asset, Liability, Equity, Revenue, Expense
    is_active = Column(Boolean, default=True)

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_date = Column(Date, nullable=False, index=True)
    reference_number = Column(String, nullable=True)
    description = Column(Text, nullable=False)
    total_amount = Column(Float, nullable=False)
    transaction_type = Column(String, nullable=False)  # Income, Expense, Transfer, Adjustment
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    status = Column(String, default="Posted")  # Draft, Posted, Reconciled
    line_items = relationship("TransactionLineItem", back_populates="transaction", cascade="all, delete-orphan")

class TransactionLineItem(Base):
    __tablename__ = "transaction_line_items"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), index=True)
    account_id = Column(Integer, ForeignKey("chart_of_accounts.id"), index=True)
    description = Column(Text, nullable=True)
    debit_amount = Column(Float, default=0.0)
    credit_amount = Column(Float, default=0.0)
    transaction = relationship("Transaction", back_populates="line_items")
    account = relationship("Account")

class BudgetCategory(Base):
    __tablename__ = "budget_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    account_id = Column(Integer, ForeignKey("chart_of_accounts.id"), nullable=True)
    budget_year = Column(Integer, nullable=False)
    monthly_budget = Column(Float, nullable=False)
    account = relationship("Account")
