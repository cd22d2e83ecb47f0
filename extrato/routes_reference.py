# routes_reference.py
"""
Reference data endpoints: categories (with CRUD), payment methods and banks.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from extrato.deps import get_db
from extrato.schemas import CategoryCreate, CategoryUpdate
from extrato.services import reference

router = APIRouter(tags=["reference"])


# ---- Categories ----

@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return reference.list_categories(db)


@router.get("/categories/hierarchy")
def categories_hierarchy(db: Session = Depends(get_db)):
    return {"items": reference.category_hierarchy(db)}


@router.get("/categories/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    return reference.category_to_dict(reference.get_category(db, category_id))


@router.post("/categories", status_code=201)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    category = reference.create_category(
        db,
        name=payload.name,
        kind=payload.kind,
        slug=payload.slug,
        parent_id=payload.parent_id,
    )
    return reference.category_to_dict(category)


@router.put("/categories/{category_id}")
def update_category(category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    return reference.category_to_dict(reference.update_category(db, category_id, changes))


@router.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    reference.delete_category(db, category_id)


# ---- Payment methods & banks ----

@router.get("/payment-methods")
def list_payment_methods(db: Session = Depends(get_db)):
    return {"items": reference.list_payment_methods(db)}


@router.get("/payment-methods/{payment_method_id}")
def get_payment_method(payment_method_id: int, db: Session = Depends(get_db)):
    return reference.payment_method_to_dict(reference.get_payment_method(db, payment_method_id))


@router.get("/banks")
def list_banks(db: Session = Depends(get_db)):
    return {"items": reference.list_banks(db)}
