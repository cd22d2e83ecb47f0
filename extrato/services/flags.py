# extrato/services/flags.py
# Role: Keyword heuristics that derive the transaction flags from category,
#       subcategory, notes and description text.

from dataclasses import dataclass, fields
from typing import Callable, Optional, Tuple

INTERNAL_TRANSFER_TERMS = ("transferência interna", "transferencia interna")
CARD_CATEGORY_TERMS = ("cartão de crédito", "cartao de credito", "cartão", "cartao")
CARD_BILL_SUBCATEGORY_TERMS = ("pagamento de fatura", "pagamento", "fatura")
INVESTMENT_TERMS = ("investimento", "investimentos", "aporte", "aplicação", "aplicacao")
REFUND_TERMS = ("estorno", "chargeback", "devolução", "devolucao")
FEE_TERMS = ("tarifa", "anuidade", "iof", "encargo", "taxa")


@dataclass
class Flags:
    is_internal_transfer: bool = False
    is_card_bill_payment: bool = False
    is_investment: bool = False
    is_refund: bool = False
    is_fee: bool = False

    def merge(self, other: "Flags") -> "Flags":
        """Flag-wise OR."""
        return Flags(**{
            f.name: bool(getattr(self, f.name) or getattr(other, f.name))
            for f in fields(self)
        })

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class FlagText:
    category: str
    subcategory: str
    notes: str
    description: str


def _has_any(text: str, terms: Tuple[str, ...]) -> bool:
    return any(term in text for term in terms)


def _internal_transfer(t: FlagText) -> bool:
    return (
        _has_any(t.category, INTERNAL_TRANSFER_TERMS)
        or _has_any(t.subcategory, INTERNAL_TRANSFER_TERMS)
        or _has_any(t.notes, INTERNAL_TRANSFER_TERMS)
    )


def _card_bill_payment(t: FlagText) -> bool:
    # both parts are required: a card category on its own is ordinary card spend
    return _has_any(t.category, CARD_CATEGORY_TERMS) and _has_any(
        t.subcategory, CARD_BILL_SUBCATEGORY_TERMS
    )


def _investment(t: FlagText) -> bool:
    return _has_any(t.category, INVESTMENT_TERMS)


def _refund(t: FlagText) -> bool:
    return _has_any(t.description, REFUND_TERMS) or _has_any(t.notes, REFUND_TERMS)


def _fee(t: FlagText) -> bool:
    return _has_any(t.category, FEE_TERMS) or _has_any(t.subcategory, FEE_TERMS)


FLAG_RULES: Tuple[Tuple[str, Callable[[FlagText], bool]], ...] = (
    ("is_internal_transfer", _internal_transfer),
    ("is_card_bill_payment", _card_bill_payment),
    ("is_investment", _investment),
    ("is_refund", _refund),
    ("is_fee", _fee),
)


def derive_flags(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    notes: Optional[str] = None,
    description: Optional[str] = None,
) -> Flags:
    text = FlagText(
        category=(category or "").lower(),
        subcategory=(subcategory or "").lower(),
        notes=(notes or "").lower(),
        description=(description or "").lower(),
    )
    return Flags(**{name: rule(text) for name, rule in FLAG_RULES})
