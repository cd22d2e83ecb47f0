# extrato/services/import_helpers.py
#
# Import Helper Functions
# Content hash used as the de-duplication key, slug generation for categories,
# and conversion of ingestion rows into Transaction ORM objects.

import hashlib
import re
import unicodedata
from datetime import date, datetime
from typing import Optional, Union

from models import Transaction

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


# ---- Content hash ----

def format_amount_for_hash(amount: Optional[float]) -> str:
    """
    Render an amount the way statement hashes have always been computed:
    integral values without a decimal part ('-50'), others in shortest form ('-50.5').
    """
    if amount is None:
        return "null"
    value = float(amount)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def compute_hash(tx_date: Union[str, date], amount: Optional[float], description: str) -> str:
    """sha256 hex of 'YYYY-MM-DD|amount|description'."""
    if isinstance(tx_date, (date, datetime)):
        tx_date = tx_date.strftime("%Y-%m-%d")
    payload = f"{tx_date}|{format_amount_for_hash(amount)}|{description}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---- Slugs ----

def slugify(text: str) -> str:
    """'Alimentação / Mercado' -> 'alimentacao-mercado'"""
    decomposed = unicodedata.normalize("NFD", text or "")
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SLUG_STRIP_RE.sub("-", ascii_only.lower()).strip("-")


# ---- Transaction Conversion ----

def parse_iso_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value), "%Y-%m-%d").date()


def build_transaction_from_dict(tx: dict) -> Transaction:
    """
    Convert one resolved ingestion row into a Transaction ORM object.

    Expects ids and flags already resolved (see extrato.services.ingest).
    """
    return Transaction(
        statement_id=tx.get("statement_id"),
        date=parse_iso_date(tx["date"]),
        description=tx.get("description", ""),
        merchant=tx.get("merchant") or None,
        direction=tx["direction"],
        amount=float(tx["amount"]),
        category_id=tx.get("category_id"),
        subcategory_id=tx.get("subcategory_id"),
        payment_method_id=tx.get("payment_method_id"),
        payment_method=tx.get("payment_method") or None,
        bank_id=tx.get("bank_id"),
        is_internal_transfer=bool(tx.get("is_internal_transfer")),
        is_card_bill_payment=bool(tx.get("is_card_bill_payment")),
        is_investment=bool(tx.get("is_investment")),
        is_refund=bool(tx.get("is_refund")),
        is_fee=bool(tx.get("is_fee")),
        movement_kind=tx.get("movement_kind") or None,
        notes=tx.get("notes") or None,
        confidence=tx.get("confidence"),
        hash=tx["hash"],
    )
