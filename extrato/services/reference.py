# extrato/services/reference.py
# Role: Read/write access to reference data: the two-level category tree,
#       payment methods and banks.

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from models import Bank, Category, PaymentMethod, Transaction
from extrato.errors import ConflictError, NotFoundError, ReferenceIntegrityError
from extrato.services.import_helpers import slugify

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Serialization
# -------------------------------------------------------------------

def category_to_dict(c: Category) -> Dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "slug": c.slug,
        "kind": c.kind,
        "parentId": c.parent_id,
    }


def payment_method_to_dict(pm: PaymentMethod) -> Dict[str, Any]:
    return {
        "id": pm.id,
        "code": pm.code,
        "label": pm.label,
        "aliases": pm.alias_list(),
    }


def bank_to_dict(b: Bank) -> Dict[str, Any]:
    return {"id": b.id, "code": b.code, "name": b.name}


# -------------------------------------------------------------------
# Categories
# -------------------------------------------------------------------

def list_categories(db: Session) -> Dict[str, Any]:
    items = db.query(Category).order_by(Category.name).all()
    return {"items": [category_to_dict(c) for c in items], "total": len(items)}


def category_hierarchy(db: Session) -> List[Dict[str, Any]]:
    """Roots with their children nested under "children", both sorted by name."""
    rows = db.query(Category).order_by(Category.name).all()

    nodes = {c.id: {**category_to_dict(c), "children": []} for c in rows}
    roots = []
    for c in rows:
        node = nodes[c.id]
        if c.parent_id is None:
            roots.append(node)
        elif c.parent_id in nodes:
            nodes[c.parent_id]["children"].append(node)
    return roots


def get_category(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Categoria não encontrada")
    return category


def _check_parent(db: Session, parent_id: Optional[int], category_id: Optional[int] = None) -> None:
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise ReferenceIntegrityError("Uma categoria não pode ser pai de si mesma")
    parent = db.get(Category, parent_id)
    if parent is None:
        raise ReferenceIntegrityError("Categoria pai não encontrada")
    if parent.parent_id is not None:
        raise ReferenceIntegrityError("Subcategorias não podem ter subcategorias")


def _check_slug_free(db: Session, slug: str) -> None:
    if db.query(Category.id).filter(Category.slug == slug).first() is not None:
        raise ConflictError("Slug já existe")


def create_category(
    db: Session,
    name: str,
    kind: str = "spend",
    slug: Optional[str] = None,
    parent_id: Optional[int] = None,
) -> Category:
    if not slug:
        if parent_id is not None:
            parent = db.get(Category, parent_id)
            slug = slugify(f"{parent.name}-{name}") if parent else slugify(name)
        else:
            slug = slugify(name)

    _check_slug_free(db, slug)
    _check_parent(db, parent_id)

    category = Category(name=name, slug=slug, kind=kind, parent_id=parent_id)
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info("Created category %s (%s)", category.id, category.slug)
    return category


def update_category(db: Session, category_id: int, changes: Dict[str, Any]) -> Category:
    """Apply the given fields; a missing key means "leave unchanged"."""
    category = get_category(db, category_id)

    new_slug = changes.get("slug")
    if new_slug and new_slug != category.slug:
        _check_slug_free(db, new_slug)

    if "parent_id" in changes:
        _check_parent(db, changes["parent_id"], category_id=category.id)
        if changes["parent_id"] is not None and category.children:
            raise ReferenceIntegrityError(
                "Categoria com subcategorias não pode virar subcategoria"
            )

    for field in ("name", "slug", "kind", "parent_id"):
        if field in changes and (changes[field] is not None or field == "parent_id"):
            setattr(category, field, changes[field])

    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, category_id: int) -> None:
    category = get_category(db, category_id)

    has_children = db.query(Category.id).filter(Category.parent_id == category_id).first()
    if has_children is not None:
        raise ConflictError("Não é possível excluir categoria que tem subcategorias")

    tx_count = (
        db.query(func.count(Transaction.id))
        .filter(or_(Transaction.category_id == category_id, Transaction.subcategory_id == category_id))
        .scalar()
        or 0
    )
    if tx_count > 0:
        raise ConflictError("Não é possível excluir categoria que tem transações associadas")

    db.delete(category)
    db.commit()
    logger.info("Deleted category %s", category_id)


# -------------------------------------------------------------------
# Payment methods & banks
# -------------------------------------------------------------------

def list_payment_methods(db: Session) -> List[Dict[str, Any]]:
    rows = db.query(PaymentMethod).order_by(PaymentMethod.label).all()
    return [payment_method_to_dict(pm) for pm in rows]


def get_payment_method(db: Session, payment_method_id: int) -> PaymentMethod:
    pm = db.get(PaymentMethod, payment_method_id)
    if pm is None:
        raise NotFoundError("Meio de pagamento não encontrado")
    return pm


def find_payment_method(db: Session, code_or_alias: str) -> Optional[PaymentMethod]:
    """Case-insensitive match on code, label or any alias."""
    needle = (code_or_alias or "").strip().upper()
    if not needle:
        return None
    for pm in db.query(PaymentMethod).all():
        candidates = [pm.code, pm.label] + pm.alias_list()
        if any(needle == c.strip().upper() for c in candidates):
            return pm
    return None


def list_banks(db: Session) -> List[Dict[str, Any]]:
    rows = db.query(Bank).order_by(Bank.id).all()
    return [bank_to_dict(b) for b in rows]


def get_bank_by_code(db: Session, code: str) -> Optional[Bank]:
    return db.query(Bank).filter(Bank.code == code).first()
