# routes_transactions.py
"""
Routes for the transactions list (filters, sorting, pagination) and manual
create / edit / delete of single transactions.
"""

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from models import Bank, Category, PaymentMethod, Transaction
from extrato.deps import get_db
from extrato.errors import ConflictError, NotFoundError, ReferenceIntegrityError
from extrato.schemas import TransactionIn, TransactionUpdate
from extrato.services.dashboard import DashboardFilters
from extrato.services.import_helpers import build_transaction_from_dict
from extrato.services.ingest import ReferenceResolver, resolve_row

router = APIRouter(prefix="/transactions", tags=["transactions"])

SORT_COLUMNS = {
    "date": Transaction.date,
    "amount": Transaction.amount,
    "category": Transaction.category_id,
    "confidence": Transaction.confidence,
}

# Columns that cannot be cleared through PUT
REQUIRED_FIELDS = {
    "date", "description", "direction", "amount",
    "is_internal_transfer", "is_card_bill_payment", "is_investment", "is_refund", "is_fee",
}


def transaction_to_dict(tx: Transaction, category: Optional[str] = None, subcategory: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": tx.id,
        "statementId": tx.statement_id,
        "date": tx.date.isoformat(),
        "description": tx.description,
        "merchant": tx.merchant,
        "type": tx.direction,
        "amount": tx.amount,
        "categoryId": tx.category_id,
        "subcategoryId": tx.subcategory_id,
        "category": category,
        "subcategory": subcategory,
        "paymentMethodId": tx.payment_method_id,
        "paymentMethod": tx.payment_method,
        "bankId": tx.bank_id,
        "movementKind": tx.movement_kind,
        "notes": tx.notes,
        "confidence": tx.confidence,
        "isInternalTransfer": tx.is_internal_transfer,
        "isCardBillPayment": tx.is_card_bill_payment,
        "isInvestment": tx.is_investment,
        "isRefund": tx.is_refund,
        "isFee": tx.is_fee,
        "hash": tx.hash,
    }


def _get_transaction(db: Session, transaction_id: int) -> Transaction:
    tx = db.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError("Transação não encontrada")
    return tx


def _labels(tx: Transaction):
    return (
        tx.category.name if tx.category else None,
        tx.subcategory.name if tx.subcategory else None,
    )


@router.get("")
def list_transactions(
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    category_ids: Optional[str] = Query(None, alias="categoryIds"),
    subcategory_ids: Optional[str] = Query(None, alias="subcategoryIds"),
    payment_method_ids: Optional[str] = Query(None, alias="paymentMethodIds"),
    q: Optional[str] = Query(None),
    direction: Optional[str] = Query(None, alias="type", pattern="^(income|spend)$"),
    include_transfers: bool = Query(False, alias="includeTransfers"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=500, alias="pageSize"),
    sort: str = Query("-date"),
    db: Session = Depends(get_db),
):
    filters = DashboardFilters.from_query(
        date_from, date_to, category_ids, subcategory_ids, payment_method_ids, q
    )
    conditions = filters.conditions()
    if direction:
        conditions.append(Transaction.direction == direction)
    if not include_transfers:
        conditions.append(Transaction.is_internal_transfer.is_(False))

    total = db.query(func.count(Transaction.id)).filter(*conditions).scalar() or 0

    # Sorting: "field" ascending, "-field" descending; unknown fields fall back to newest first
    descending = sort.startswith("-")
    sort_col = SORT_COLUMNS.get(sort.lstrip("-"))
    if sort_col is None:
        order = [Transaction.date.desc()]
    else:
        order = [sort_col.desc() if descending else sort_col.asc()]
    order.append(Transaction.id.desc())

    cat = aliased(Category)
    sub = aliased(Category)
    rows = (
        db.query(Transaction, cat.name, sub.name)
        .outerjoin(cat, Transaction.category_id == cat.id)
        .outerjoin(sub, Transaction.subcategory_id == sub.id)
        .filter(*conditions)
        .order_by(*order)
        .limit(page_size)
        .offset((page - 1) * page_size)
        .all()
    )

    return {
        "items": [transaction_to_dict(tx, c, s) for tx, c, s in rows],
        "page": page,
        "pageSize": page_size,
        "total": int(total),
    }


@router.get("/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    tx = _get_transaction(db, transaction_id)
    return transaction_to_dict(tx, *_labels(tx))


@router.post("", status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    """
    Manual entry, bypassing classification. Heuristic flags still apply and
    the content hash is computed when not supplied.
    """
    row = resolve_row(ReferenceResolver(db), payload, statement_id=None, default_bank_id=None)
    tx = build_transaction_from_dict(row)
    db.add(tx)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Transação duplicada (mesmo hash)")
    db.refresh(tx)
    return transaction_to_dict(tx, *_labels(tx))


def _require(db: Session, model, pk: Optional[int], label: str) -> None:
    if pk is not None and db.get(model, pk) is None:
        raise ReferenceIntegrityError(f"{label} {pk} não encontrado")


def _check_hierarchy(db: Session, category_id: Optional[int], subcategory_id: Optional[int]) -> None:
    """The subcategory, when set, must be a child of the category."""
    if subcategory_id is None:
        return
    sub = db.get(Category, subcategory_id)
    if sub.parent_id is None or sub.parent_id != category_id:
        raise ReferenceIntegrityError(
            f"Subcategoria {subcategory_id} não pertence à categoria {category_id}"
        )


@router.put("/{transaction_id}")
def update_transaction(transaction_id: int, payload: TransactionUpdate, db: Session = Depends(get_db)):
    tx = _get_transaction(db, transaction_id)
    changes = payload.model_dump(exclude_unset=True)

    _require(db, Category, changes.get("category_id"), "Categoria")
    _require(db, Category, changes.get("subcategory_id"), "Subcategoria")
    _check_hierarchy(
        db,
        changes.get("category_id", tx.category_id),
        changes.get("subcategory_id", tx.subcategory_id),
    )
    _require(db, Bank, changes.get("bank_id"), "Banco")

    if "payment_method_id" in changes:
        pm_id = changes["payment_method_id"]
        pm = db.get(PaymentMethod, pm_id) if pm_id is not None else None
        if pm_id is not None and pm is None:
            raise ReferenceIntegrityError(f"Meio de pagamento {pm_id} não encontrado")
        tx.payment_method = pm.label if pm else None

    for field, value in changes.items():
        if value is None and field in REQUIRED_FIELDS:
            continue
        setattr(tx, field, value)

    db.commit()
    db.refresh(tx)
    return transaction_to_dict(tx, *_labels(tx))


@router.delete("/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    tx = _get_transaction(db, transaction_id)
    db.delete(tx)
    db.commit()
