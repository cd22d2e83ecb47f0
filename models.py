# models.py
# Role: SQLAlchemy ORM models for the statement dashboard domain.
#       Users own Statements (one per ingestion batch); Transactions reference
#       a two-level Category tree, a PaymentMethod and a Bank.

import json
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from db import Base

CATEGORY_KINDS = ("spend", "income", "transfer", "invest", "fee")
DIRECTIONS = ("income", "spend")
MOVEMENT_KINDS = ("spend", "income", "transfer", "invest", "fee")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    api_key = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Statement(Base):
    """
    One ingestion batch: who sent it, the period it declares and the file it came from.
    """

    __tablename__ = "statements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    source_file = Column(String, nullable=False)
    bank_id = Column(Integer, ForeignKey("banks.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    transactions = relationship("Transaction", back_populates="statement")


class Category(Base):
    """
    Category tree with one level of nesting.

    Roots have parent_id = NULL; subcategories point to a root.
    """

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True)
    kind = Column(String, nullable=False, default="spend")

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, nullable=False, unique=True)
    label = Column(String, nullable=False)

    # JSON-encoded list of strings, e.g. '["PIX", "QR PIX"]'
    aliases = Column(Text, nullable=True)

    def alias_list(self) -> list[str]:
        if not self.aliases:
            return []
        try:
            values = json.loads(self.aliases)
        except ValueError:
            return []
        return [str(v) for v in values]


class Bank(Base):
    __tablename__ = "banks"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)


class Transaction(Base):
    """
    ORM model representing a single normalized financial transaction.

    Amounts are signed (negative = spend). The flag columns decide whether a
    row counts as "real" income/expense in the dashboard aggregations, and
    `hash` is the de-duplication key (sha256 of date|amount|description).
    """

    __tablename__ = "transactions"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    statement_id = Column(Integer, ForeignKey("statements.id"), nullable=True)

    # Calendar date of the movement (no timezone)
    date = Column(Date, nullable=False, index=True)

    # Bank-provided description and the normalized counterparty
    description = Column(Text, nullable=False)
    merchant = Column(Text, nullable=True)

    # "income" | "spend"
    direction = Column(String, nullable=False)
    amount = Column(Float, nullable=False)

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    subcategory_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=True)
    # Display label copied from payment_methods for simple listing queries
    payment_method = Column(String, nullable=True)

    bank_id = Column(Integer, ForeignKey("banks.id"), nullable=True)

    is_internal_transfer = Column(Boolean, nullable=False, default=False)
    is_card_bill_payment = Column(Boolean, nullable=False, default=False)
    is_investment = Column(Boolean, nullable=False, default=False)
    is_refund = Column(Boolean, nullable=False, default=False)
    is_fee = Column(Boolean, nullable=False, default=False)

    movement_kind = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)

    hash = Column(String(64), nullable=False, unique=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    statement = relationship("Statement", back_populates="transactions")
    category = relationship("Category", foreign_keys=[category_id])
    subcategory = relationship("Category", foreign_keys=[subcategory_id])
    payment = relationship("PaymentMethod")
    bank = relationship("Bank")
