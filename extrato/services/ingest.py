# extrato/services/ingest.py
# Role: Persist classified transactions. Creates the Statement, de-duplicates
#       rows by content hash, resolves category / payment method / bank
#       references and writes one row at a time.

"""
Ingestion service.

Each row is committed on its own: a failing row leaves the rows before it in
place. A unique-hash violation is the expected way a re-uploaded transaction
shows up and is counted as a duplicate; any other database error propagates.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Bank, Category, PaymentMethod, Statement, Transaction, User
from extrato.errors import EmptyStatementError, ReferenceIntegrityError
from extrato.schemas import TransactionIn
from extrato.services.auto_categorize import BatchClassifier
from extrato.services.csv_import import DIALECT_BANK_CODES, decode_statement, parse_statement
from extrato.services.flags import Flags, derive_flags
from extrato.services.import_helpers import build_transaction_from_dict, compute_hash
from extrato.services.records import ClassifiedTransaction, classified_to_ingest_row
from extrato.services.reference import find_payment_method, get_bank_by_code

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    statement_id: int
    inserted: int
    duplicates: int


# -------------------------------------------------------------------
# Reference resolution
# -------------------------------------------------------------------

class ReferenceResolver:
    """
    Resolves category / payment method / bank references for one ingestion
    run, caching lookups by id and label.
    """

    def __init__(self, db: Session):
        self.db = db
        self._categories: Dict[int, Optional[Category]] = {}
        self._by_label: Dict[Tuple[Optional[int], str], Optional[Category]] = {}
        self._banks: Dict[int, bool] = {}

    def category(self, category_id: Optional[int]) -> Optional[Category]:
        if category_id is None:
            return None
        if category_id not in self._categories:
            self._categories[category_id] = self.db.get(Category, category_id)
        return self._categories[category_id]

    def category_by_label(self, label: Optional[str], parent_id: Optional[int]) -> Optional[Category]:
        name = (label or "").strip()
        if not name:
            return None
        key = (parent_id, name.lower())
        if key not in self._by_label:
            q = self.db.query(Category).filter(func.lower(Category.name) == name.lower())
            if parent_id is None:
                q = q.filter(Category.parent_id.is_(None))
            else:
                q = q.filter(Category.parent_id == parent_id)
            self._by_label[key] = q.first()
        return self._by_label[key]

    def resolve_categories(self, tx: TransactionIn) -> Tuple[Optional[Category], Optional[Category]]:
        """
        Id first, label second (subcategory labels are looked up under the parent).

        A subcategory id always has to sit under the resolved category: with no
        category the parent is taken, with a different category it is dropped.
        """
        category = self.category(tx.category_id) or self.category_by_label(tx.category, None)
        if category is None and (tx.category_id is not None or tx.category):
            logger.warning(
                "Unknown category (id=%s, label=%r) for %r; stored without category",
                tx.category_id, tx.category, tx.description,
            )

        subcategory = self.category(tx.subcategory_id)
        if subcategory is not None and subcategory.parent_id is None:
            logger.warning(
                "Category %s is not a subcategory; ignored for %r", subcategory.id, tx.description
            )
            subcategory = None
        if subcategory is not None and category is None:
            category = self.category(subcategory.parent_id)
        elif subcategory is not None and subcategory.parent_id != category.id:
            logger.warning(
                "Subcategory %s belongs to category %s, not %s; ignored for %r",
                subcategory.id, subcategory.parent_id, category.id, tx.description,
            )
            subcategory = None

        if subcategory is None and category is not None:
            subcategory = self.category_by_label(tx.subcategory, category.id)
        if subcategory is None and (tx.subcategory_id is not None or tx.subcategory):
            logger.warning(
                "Unknown subcategory (id=%s, label=%r) for %r; stored without subcategory",
                tx.subcategory_id, tx.subcategory, tx.description,
            )
        return category, subcategory

    def payment_method(self, tx: TransactionIn) -> Tuple[Optional[int], Optional[str]]:
        """Returns (payment_method_id, label)."""
        if tx.payment_method_id is not None:
            pm = self.db.get(PaymentMethod, tx.payment_method_id)
            if pm is None:
                raise ReferenceIntegrityError(
                    f"Meio de pagamento {tx.payment_method_id} não encontrado"
                )
            return pm.id, pm.label

        if tx.payment_method:
            pm = find_payment_method(self.db, tx.payment_method)
            if pm is not None:
                return pm.id, pm.label
            return None, tx.payment_method

        return None, None

    def require_bank(self, bank_id: Optional[int]) -> None:
        if bank_id is None:
            return
        if bank_id not in self._banks:
            self._banks[bank_id] = self.db.get(Bank, bank_id) is not None
        if not self._banks[bank_id]:
            raise ReferenceIntegrityError(f"Banco {bank_id} não encontrado")


# -------------------------------------------------------------------
# Row building
# -------------------------------------------------------------------

def resolve_row(
    resolver: ReferenceResolver,
    tx: TransactionIn,
    statement_id: int,
    default_bank_id: Optional[int],
) -> dict:
    category, subcategory = resolver.resolve_categories(tx)
    payment_method_id, payment_label = resolver.payment_method(tx)

    bank_id = tx.bank_id if tx.bank_id is not None else default_bank_id
    resolver.require_bank(bank_id)

    supplied = Flags(
        is_internal_transfer=tx.is_internal_transfer,
        is_card_bill_payment=tx.is_card_bill_payment,
        is_investment=tx.is_investment,
        is_refund=tx.is_refund,
        is_fee=tx.is_fee or tx.movement_kind == "fee",
    )
    heuristic = derive_flags(
        category=category.name if category else tx.category,
        subcategory=subcategory.name if subcategory else tx.subcategory,
        notes=tx.notes,
        description=tx.description,
    )
    flags = supplied.merge(heuristic)

    return {
        "statement_id": statement_id,
        "date": tx.date,
        "description": tx.description,
        "merchant": tx.merchant,
        "direction": tx.direction,
        "amount": tx.amount,
        "category_id": category.id if category else None,
        "subcategory_id": subcategory.id if subcategory else None,
        "payment_method_id": payment_method_id,
        "payment_method": payment_label,
        "bank_id": bank_id,
        "movement_kind": tx.movement_kind,
        "notes": tx.notes,
        "confidence": tx.confidence,
        "hash": tx.hash or compute_hash(tx.date, tx.amount, tx.description),
        **flags.as_dict(),
    }


def ensure_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        user = User(id=user_id, name=f"Usuário {user_id}", email=f"user{user_id}@localhost")
        db.add(user)
        db.commit()
        logger.info("Created placeholder user %s", user_id)
    return user


def _hash_exists(db: Session, tx_hash: str) -> bool:
    return db.query(Transaction.id).filter(Transaction.hash == tx_hash).first() is not None


# -------------------------------------------------------------------
# Ingestion
# -------------------------------------------------------------------

def ingest_batch(
    db: Session,
    user_id: int,
    period_start: date,
    period_end: date,
    source_file: str,
    transactions: Iterable[TransactionIn],
    bank_id: Optional[int] = None,
) -> IngestResult:
    resolver = ReferenceResolver(db)
    resolver.require_bank(bank_id)
    ensure_user(db, user_id)

    statement = Statement(
        user_id=user_id,
        period_start=period_start,
        period_end=period_end,
        source_file=source_file,
        bank_id=bank_id,
    )
    db.add(statement)
    db.commit()
    db.refresh(statement)

    inserted = 0
    duplicates = 0

    for tx in transactions:
        row = resolve_row(resolver, tx, statement.id, bank_id)
        db.add(build_transaction_from_dict(row))
        try:
            db.commit()
            inserted += 1
        except IntegrityError:
            db.rollback()
            if not _hash_exists(db, row["hash"]):
                raise
            duplicates += 1

    logger.info(
        "Statement %s (%s): %d inserted, %d duplicates",
        statement.id, source_file, inserted, duplicates,
    )
    return IngestResult(statement_id=statement.id, inserted=inserted, duplicates=duplicates)


def statement_period(transactions: List[TransactionIn]) -> Tuple[date, date]:
    dates = [tx.date for tx in transactions]
    return min(dates), max(dates)


# -------------------------------------------------------------------
# CSV upload pipeline
# -------------------------------------------------------------------

@dataclass
class UploadResult(IngestResult):
    total_classified: int = 0
    skipped: int = 0
    dialect: str = ""


def default_bank_for_dialect(db: Session, dialect: str) -> Optional[int]:
    code = DIALECT_BANK_CODES.get(dialect)
    bank = get_bank_by_code(db, code) if code else None
    return bank.id if bank else None


def classified_to_rows(db: Session, classified: List[ClassifiedTransaction]) -> Tuple[List[TransactionIn], int]:
    """
    Turn classifier output into ingestion rows.

    Rows without an amount, or that fail row validation (an empty description),
    cannot be stored and are counted as skipped.
    Payment method ids the model made up are dropped (the code is kept), since
    an unknown id would otherwise reject the whole upload.
    """
    known_methods = {pm_id for (pm_id,) in db.query(PaymentMethod.id).all()}
    rows: List[TransactionIn] = []
    skipped = 0

    for tx in classified:
        if tx.amount is None or not tx.date:
            logger.warning("Skipping %r: no amount or date after classification", tx.description)
            skipped += 1
            continue

        row = classified_to_ingest_row(tx)
        if row["payment_method_id"] is not None and row["payment_method_id"] not in known_methods:
            logger.warning(
                "Model returned unknown payment method id %s for %r; keeping code %r",
                row["payment_method_id"], tx.description, row["payment_method"],
            )
            row["payment_method_id"] = None
        try:
            rows.append(TransactionIn.model_validate(row))
        except ValidationError as exc:
            logger.warning("Skipping %r: %s", tx.description, exc.errors()[0]["msg"])
            skipped += 1

    return rows, skipped


def ingest_statement_file(
    db: Session,
    classifier_factory: Callable[[Optional[int]], BatchClassifier],
    content: bytes,
    source_file: str,
    user_id: int,
    bank_id: Optional[int] = None,
) -> UploadResult:
    """
    decode -> detect -> parse -> classify -> ingest.

    Nothing is written when parsing or classification fails.
    `classifier_factory(bank_id)` builds the classifier once the bank is known.
    """
    parsed = parse_statement(decode_statement(content))

    if bank_id is None:
        bank_id = default_bank_for_dialect(db, parsed.dialect)
    else:
        ReferenceResolver(db).require_bank(bank_id)

    classifier = classifier_factory(bank_id)
    classified = classifier.classify(parsed.transactions, bank_id=bank_id)

    rows, dropped = classified_to_rows(db, classified)
    skipped = parsed.skipped + dropped
    if not rows:
        raise EmptyStatementError("Nenhuma transação válida após a classificação.")

    period_start, period_end = statement_period(rows)
    result = ingest_batch(
        db,
        user_id=user_id,
        period_start=period_start,
        period_end=period_end,
        source_file=source_file,
        transactions=rows,
        bank_id=bank_id,
    )

    return UploadResult(
        statement_id=result.statement_id,
        inserted=result.inserted,
        duplicates=result.duplicates,
        total_classified=len(classified),
        skipped=skipped,
        dialect=parsed.dialect,
    )
