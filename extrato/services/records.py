# extrato/services/records.py
# Role: The three pipeline stage records (RawLine -> ParsedTransaction -> ClassifiedTransaction)
#       and the conversions between them.

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class RawLine:
    """One data line of a statement file, already split into cells."""

    line_no: int
    cells: List[str]


@dataclass
class ParsedTransaction:
    """Normalized transaction as read from a CSV statement (before classification)."""

    date: str  # ISO YYYY-MM-DD
    description: str
    amount: Optional[float]
    direction: str  # "income" | "spend"
    dialect: str
    reference_id: str = ""
    balance: Optional[float] = None
    line_no: Optional[int] = None

    def to_prompt_item(self) -> Dict[str, Any]:
        # Fields the classifier sees; line/dialect bookkeeping stays local
        return {
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
            "type": self.direction,
            "reference_id": self.reference_id,
        }


@dataclass
class ParseResult:
    dialect: str
    transactions: List[ParsedTransaction] = field(default_factory=list)
    skipped: int = 0


@dataclass
class ClassifiedTransaction:
    """
    One record of the classifier's output contract.

    The four flag fields are 0/1 integers, as returned by the model.
    """

    date: Optional[str]
    description: str
    amount: Optional[float]
    type: str
    counterparty_normalized: str
    payment_method: str
    payment_method_id: Optional[int]
    bank_id: Optional[int]
    category_id: Optional[int]
    subcategory_id: Optional[int]
    category_label: str
    subcategory_label: Optional[str]
    movement_kind: str
    is_internal_transfer: int = 0
    is_card_bill_payment: int = 0
    is_investment: int = 0
    is_refund: int = 0
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def raw_line_to_parsed(
    raw: RawLine,
    dialect: str,
    date_iso: str,
    description: str,
    amount: Optional[float],
    direction: str,
    reference_id: str = "",
    balance: Optional[float] = None,
) -> ParsedTransaction:
    return ParsedTransaction(
        date=date_iso,
        description=description,
        amount=amount,
        direction=direction,
        dialect=dialect,
        reference_id=reference_id,
        balance=balance,
        line_no=raw.line_no,
    )


def classified_to_ingest_row(tx: ClassifiedTransaction) -> Dict[str, Any]:
    """
    Map a classifier record onto the ingestion row shape
    (see extrato.schemas.TransactionIn).
    """
    return {
        "date": tx.date,
        "description": tx.description,
        "merchant": tx.counterparty_normalized or None,
        "direction": tx.type,
        "amount": tx.amount,
        "category_id": tx.category_id,
        "subcategory_id": tx.subcategory_id,
        "category": tx.category_label or None,
        "subcategory": tx.subcategory_label or None,
        "payment_method": tx.payment_method or None,
        "payment_method_id": tx.payment_method_id,
        "bank_id": tx.bank_id,
        "movement_kind": tx.movement_kind,
        "is_internal_transfer": bool(tx.is_internal_transfer),
        "is_card_bill_payment": bool(tx.is_card_bill_payment),
        "is_investment": bool(tx.is_investment),
        "is_refund": bool(tx.is_refund),
        "confidence": tx.confidence,
    }
