# extrato/routes_dashboard.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from extrato.context import AppContext
from extrato.deps import get_ctx, get_db
from extrato.services import dashboard
from extrato.services.dashboard import DashboardFilters

router = APIRouter(prefix="/dash", tags=["dashboard"])


def dashboard_filters(
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    category_ids: Optional[str] = Query(None, alias="categoryIds"),
    subcategory_ids: Optional[str] = Query(None, alias="subcategoryIds"),
    payment_method_ids: Optional[str] = Query(None, alias="paymentMethodIds"),
    q: Optional[str] = Query(None),
) -> DashboardFilters:
    return DashboardFilters.from_query(
        date_from, date_to, category_ids, subcategory_ids, payment_method_ids, q
    )


@router.get("/overview")
def overview(
    filters: DashboardFilters = Depends(dashboard_filters),
    ctx: AppContext = Depends(get_ctx),
    db: Session = Depends(get_db),
):
    return dashboard.overview(db, filters, ctx.settings.investment_income_slug)


@router.get("/by-category")
def by_category(
    filters: DashboardFilters = Depends(dashboard_filters),
    db: Session = Depends(get_db),
):
    return {"items": dashboard.by_category(db, filters)}


@router.get("/series")
def series(
    group_by: str = Query("day", alias="groupBy", pattern="^(day|week|month)$"),
    filters: DashboardFilters = Depends(dashboard_filters),
    ctx: AppContext = Depends(get_ctx),
    db: Session = Depends(get_db),
):
    return dashboard.series(db, filters, ctx.settings.investment_income_slug, group_by)


@router.get("/top-subcategories")
def top_subcategories(
    filters: DashboardFilters = Depends(dashboard_filters),
    db: Session = Depends(get_db),
):
    return {"items": dashboard.top_subcategories(db, filters)}
