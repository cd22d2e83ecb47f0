# extrato/services/dashboard.py
# Role: Dashboard aggregations (overview totals, spend by category, income/spend
#       time series, top subcategories) over the filtered transaction set.

"""
Every aggregation goes through the same predicates:

- income:  direction=income, not an internal transfer, not the
           investment-income subcategory
- spend:   direction=spend, none of internal transfer / card bill / investment / fee
- fees:    direction=spend, is_fee, none of internal transfer / card bill / investment
- investment contributions: direction=spend, is_investment,
           none of internal transfer / card bill

so the category breakdown always adds up to the overview's spend total.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy import and_, case, func, not_, or_
from sqlalchemy.orm import Session, aliased

from models import Category, Transaction
from extrato.services.flags import Flags, derive_flags
from extrato.services.import_helpers import slugify
from extrato.services.records import ClassifiedTransaction

logger = logging.getLogger(__name__)

BY_CATEGORY_LIMIT = 50
TOP_SUBCATEGORIES_LIMIT = 10
SERIES_GROUPINGS = ("day", "week", "month")
UNCATEGORIZED_LABEL = "Sem categoria"


# -------------------------------------------------------------------
# Filters
# -------------------------------------------------------------------

def parse_id_list(value: Optional[str]) -> List[int]:
    """'1, 2,x,3' -> [1, 2, 3]; anything that is not an integer is ignored."""
    if not value:
        return []
    ids = []
    for part in str(value).split(","):
        part = part.strip()
        try:
            ids.append(int(part))
        except ValueError:
            continue
    return ids


@dataclass
class DashboardFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category_ids: List[int] = field(default_factory=list)
    subcategory_ids: List[int] = field(default_factory=list)
    payment_method_ids: List[int] = field(default_factory=list)
    q: Optional[str] = None

    @classmethod
    def from_query(
        cls,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category_ids: Optional[str] = None,
        subcategory_ids: Optional[str] = None,
        payment_method_ids: Optional[str] = None,
        q: Optional[str] = None,
    ) -> "DashboardFilters":
        return cls(
            date_from=date_from,
            date_to=date_to,
            category_ids=parse_id_list(category_ids),
            subcategory_ids=parse_id_list(subcategory_ids),
            payment_method_ids=parse_id_list(payment_method_ids),
            q=(q or "").strip() or None,
        )

    def conditions(self) -> list:
        conds = []
        if self.date_from:
            conds.append(Transaction.date >= self.date_from)
        if self.date_to:
            conds.append(Transaction.date <= self.date_to)
        if self.category_ids:
            conds.append(Transaction.category_id.in_(self.category_ids))
        if self.subcategory_ids:
            conds.append(Transaction.subcategory_id.in_(self.subcategory_ids))
        if self.payment_method_ids:
            conds.append(Transaction.payment_method_id.in_(self.payment_method_ids))
        if self.q:
            conds.append(
                or_(
                    Transaction.description.icontains(self.q, autoescape=True),
                    Transaction.merchant.icontains(self.q, autoescape=True),
                )
            )
        return conds


# -------------------------------------------------------------------
# Predicates
# -------------------------------------------------------------------

def investment_income_id(db: Session, slug: str) -> Optional[int]:
    row = db.query(Category.id).filter(Category.slug == slug).first()
    if row is None:
        logger.debug("Investment income category %r not found; income is not filtered by it", slug)
        return None
    return row[0]


def income_predicate(sentinel_id: Optional[int]):
    conds = [
        Transaction.direction == "income",
        not_(Transaction.is_internal_transfer),
    ]
    if sentinel_id is not None:
        conds.append(
            or_(Transaction.subcategory_id.is_(None), Transaction.subcategory_id != sentinel_id)
        )
    return and_(*conds)


SPEND_PREDICATE = and_(
    Transaction.direction == "spend",
    not_(Transaction.is_internal_transfer),
    not_(Transaction.is_card_bill_payment),
    not_(Transaction.is_investment),
    not_(Transaction.is_fee),
)

FEES_PREDICATE = and_(
    Transaction.direction == "spend",
    Transaction.is_fee,
    not_(Transaction.is_internal_transfer),
    not_(Transaction.is_card_bill_payment),
    not_(Transaction.is_investment),
)

INVESTMENT_PREDICATE = and_(
    Transaction.direction == "spend",
    Transaction.is_investment,
    not_(Transaction.is_internal_transfer),
    not_(Transaction.is_card_bill_payment),
)


def _sum_where(predicate, value):
    return func.coalesce(
        func.sum(case((predicate, value), else_=0.0)),
        0.0,
    )


# -------------------------------------------------------------------
# Aggregations
# -------------------------------------------------------------------

def overview(db: Session, filters: DashboardFilters, investment_income_slug: str) -> Dict[str, float]:
    sentinel_id = investment_income_id(db, investment_income_slug)

    total_income, total_spend, fees, investments = (
        db.query(
            _sum_where(income_predicate(sentinel_id), Transaction.amount).label("total_income"),
            _sum_where(SPEND_PREDICATE, func.abs(Transaction.amount)).label("total_spend"),
            _sum_where(FEES_PREDICATE, func.abs(Transaction.amount)).label("fees"),
            _sum_where(INVESTMENT_PREDICATE, func.abs(Transaction.amount)).label("investments"),
        )
        .filter(*filters.conditions())
        .one()
    )

    total_income = float(total_income)
    total_spend = float(total_spend)
    fees = float(fees)

    return {
        "totalIncome": total_income,
        "totalSpend": total_spend,
        "fees": fees,
        "investmentContributions": float(investments),
        "estimatedBalance": total_income - (total_spend + fees),
    }


def by_category(db: Session, filters: DashboardFilters) -> List[Dict[str, Any]]:
    cat = aliased(Category)
    sub = aliased(Category)

    total = func.sum(func.abs(Transaction.amount))
    rows = (
        db.query(
            Transaction.category_id,
            Transaction.subcategory_id,
            func.coalesce(cat.name, UNCATEGORIZED_LABEL).label("category"),
            sub.name.label("subcategory"),
            func.count(Transaction.id).label("qty"),
            total.label("total"),
        )
        .select_from(Transaction)
        .outerjoin(cat, Transaction.category_id == cat.id)
        .outerjoin(sub, Transaction.subcategory_id == sub.id)
        .filter(SPEND_PREDICATE, *filters.conditions())
        .group_by(Transaction.category_id, Transaction.subcategory_id, cat.name, sub.name)
        .order_by(total.desc())
        .limit(BY_CATEGORY_LIMIT)
        .all()
    )

    return [
        {
            "categoryId": r.category_id,
            "subcategoryId": r.subcategory_id,
            "category": r.category,
            "subcategory": r.subcategory,
            "qty": int(r.qty),
            "total": float(r.total),
            "avgTicket": float(r.total) / int(r.qty) if r.qty else 0.0,
        }
        for r in rows
    ]


def top_subcategories(db: Session, filters: DashboardFilters) -> List[Dict[str, Any]]:
    cat = aliased(Category)
    sub = aliased(Category)

    total = func.sum(func.abs(Transaction.amount))
    rows = (
        db.query(
            sub.id.label("subcategory_id"),
            sub.name.label("subcategory"),
            func.coalesce(cat.name, UNCATEGORIZED_LABEL).label("category"),
            total.label("total"),
        )
        .select_from(Transaction)
        .join(sub, Transaction.subcategory_id == sub.id)
        .outerjoin(cat, sub.parent_id == cat.id)
        .filter(SPEND_PREDICATE, *filters.conditions())
        .group_by(sub.id, sub.name, cat.name)
        .order_by(total.desc())
        .limit(TOP_SUBCATEGORIES_LIMIT)
        .all()
    )

    return [
        {
            "subcategoryId": r.subcategory_id,
            "subcategory": r.subcategory,
            "category": r.category,
            "total": float(r.total),
        }
        for r in rows
    ]


def _daily_sums(db: Session, predicate, filters: DashboardFilters, signed: bool) -> pd.DataFrame:
    amount = Transaction.amount if signed else func.abs(Transaction.amount)
    rows = (
        db.query(Transaction.date, func.sum(amount))
        .filter(predicate, *filters.conditions())
        .group_by(Transaction.date)
        .all()
    )
    return pd.DataFrame([tuple(r) for r in rows], columns=["date", "value"])


def bucket_label(dates: pd.Series, group_by: str) -> pd.Series:
    """
    day   -> 'YYYY-MM-DD'
    week  -> ISO date of the Sunday starting the week
    month -> 'YYYY-MM'
    """
    dt = pd.to_datetime(dates)
    if group_by == "day":
        return dt.dt.strftime("%Y-%m-%d")
    if group_by == "week":
        # W-SAT periods end on Saturday, so they start on Sunday
        return dt.dt.to_period("W-SAT").dt.start_time.dt.strftime("%Y-%m-%d")
    if group_by == "month":
        return dt.dt.strftime("%Y-%m")
    raise ValueError(f"groupBy must be one of {SERIES_GROUPINGS}")


def _bucketed(df: pd.DataFrame, group_by: str, column: str) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=["x", column])
    df = df.assign(x=bucket_label(df["date"], group_by))
    return df.groupby("x", as_index=False)["value"].sum().rename(columns={"value": column})


def series(db: Session, filters: DashboardFilters, investment_income_slug: str, group_by: str = "day") -> Dict[str, List[Dict[str, Any]]]:
    if group_by not in SERIES_GROUPINGS:
        raise ValueError(f"groupBy must be one of {SERIES_GROUPINGS}")

    sentinel_id = investment_income_id(db, investment_income_slug)
    income = _bucketed(_daily_sums(db, income_predicate(sentinel_id), filters, signed=True), group_by, "income")
    spend = _bucketed(_daily_sums(db, SPEND_PREDICATE, filters, signed=False), group_by, "spend")

    merged = (
        pd.merge(income, spend, on="x", how="outer")
        .fillna(0.0)
        .sort_values("x")
    )

    return {
        "income": [{"x": x, "y": float(y)} for x, y in zip(merged["x"], merged["income"])],
        "spend": [{"x": x, "y": float(y)} for x, y in zip(merged["x"], merged["spend"])],
    }


# -------------------------------------------------------------------
# Local summary (CLI export, no database)
# -------------------------------------------------------------------

def classified_frame(classified: Iterable[ClassifiedTransaction]) -> pd.DataFrame:
    """
    One row per classified transaction with flags merged the same way
    ingestion merges them (model flags OR keyword heuristics).
    """
    records = []
    for tx in classified:
        supplied = Flags(
            is_internal_transfer=bool(tx.is_internal_transfer),
            is_card_bill_payment=bool(tx.is_card_bill_payment),
            is_investment=bool(tx.is_investment),
            is_refund=bool(tx.is_refund),
            is_fee=tx.movement_kind == "fee",
        )
        flags = supplied.merge(
            derive_flags(tx.category_label, tx.subcategory_label, None, tx.description)
        )
        records.append({**tx.to_dict(), **flags.as_dict()})

    columns = list(ClassifiedTransaction.__dataclass_fields__) + ["is_fee"]
    return pd.DataFrame.from_records(records, columns=columns)


def local_summary(df: pd.DataFrame, investment_income_slug: str):
    """
    Overview and per-category breakdown of a classified frame.

    Returns (overview dict, by-category DataFrame).
    """
    if df.empty:
        empty = pd.DataFrame(columns=["categoria", "subcategoria", "qtd_transacoes", "total", "ticket_medio"])
        zero = {"total_entradas": 0.0, "total_saidas": 0.0, "tarifas": 0.0,
                "investimentos_aportes": 0.0, "saldo_final_estimado": 0.0}
        return zero, empty

    amount = df["amount"].fillna(0.0).astype(float)
    sub_slug = [
        slugify(f"{c}-{s}") if s else ""
        for c, s in zip(df["category_label"].fillna(""), df["subcategory_label"].fillna(""))
    ]
    internal = df["is_internal_transfer"].astype(bool)
    card = df["is_card_bill_payment"].astype(bool)
    invest = df["is_investment"].astype(bool)
    fee = df["is_fee"].astype(bool)
    is_spend = df["type"] == "spend"

    income_mask = (df["type"] == "income") & ~internal & (pd.Series(sub_slug, index=df.index) != investment_income_slug)
    spend_mask = is_spend & ~internal & ~card & ~invest & ~fee
    fees_mask = is_spend & fee & ~internal & ~card & ~invest
    invest_mask = is_spend & invest & ~internal & ~card

    total_income = float(amount[income_mask].sum())
    total_spend = float(amount[spend_mask].abs().sum())
    fees = float(amount[fees_mask].abs().sum())

    overview_row = {
        "total_entradas": round(total_income, 2),
        "total_saidas": round(total_spend, 2),
        "tarifas": round(fees, 2),
        "investimentos_aportes": round(float(amount[invest_mask].abs().sum()), 2),
        "saldo_final_estimado": round(total_income - (total_spend + fees), 2),
    }

    spend = df[spend_mask].assign(
        categoria=df["category_label"].fillna(UNCATEGORIZED_LABEL),
        subcategoria=df["subcategory_label"].fillna(""),
        valor=amount[spend_mask].abs(),
    )
    breakdown = (
        spend.groupby(["categoria", "subcategoria"], as_index=False)
        .agg(qtd_transacoes=("valor", "size"), total=("valor", "sum"))
        .sort_values("total", ascending=False)
    )
    breakdown["ticket_medio"] = (breakdown["total"] / breakdown["qtd_transacoes"]).round(2)
    breakdown["total"] = breakdown["total"].round(2)

    return overview_row, breakdown.reset_index(drop=True)
