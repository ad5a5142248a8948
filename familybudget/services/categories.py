from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from ..errors import NotFoundError, ValidationError
from ..models.budget import UserExpense
from ..models.category import Category, DEFAULT_CATEGORIES
from ..models.user import utcnow

logger = logging.getLogger(__name__)

DEFAULT_NAMES = [c["name"] for c in DEFAULT_CATEGORIES]

# Substring -> default category, checked in order
_KEYWORDS = [
    ("housing", "Housing"),
    ("home", "Housing"),
    ("mortgage", "Housing"),
    ("rent", "Housing"),
    ("utilities", "Utilities"),
    ("bills", "Utilities"),
    ("insurance", "Insurance"),
    # before "car": "daycare" contains it
    ("childcare", "Childcare"),
    ("daycare", "Childcare"),
    ("kids", "Childcare"),
    ("transport", "Transportation"),
    ("car", "Transportation"),
    ("vehicle", "Transportation"),
    ("healthcare", "Healthcare"),
    ("health", "Healthcare"),
    ("medical", "Healthcare"),
    ("food", "Food & Groceries"),
    ("groceries", "Food & Groceries"),
    ("shopping", "Food & Groceries"),
    ("subscription", "Subscriptions"),
    ("streaming", "Subscriptions"),
    ("debt", "Debt Payments"),
    ("loan", "Debt Payments"),
    ("credit", "Debt Payments"),
    ("savings", "Savings"),
    ("investment", "Savings"),
    ("entertainment", "Entertainment"),
    ("fun", "Entertainment"),
    ("leisure", "Entertainment"),
]


def match_default_category(name: str) -> str:
    """
    Default category a custom one folds into on reset. Falls back to "Other".
    """
    lowered = (name or "").strip().lower()
    for default in DEFAULT_NAMES:
        if default.lower() == lowered:
            return default
    for key, default in _KEYWORDS:
        if key in lowered:
            return default
    return "Other"


def family_categories(session: Session, family_id: int) -> List[Category]:
    q = select(Category).where(Category.family_id == family_id).order_by(Category.id)
    return list(session.exec(q).all())


def _expense_counts(session: Session, category_ids: List[int]) -> Dict[int, int]:
    if not category_ids:
        return {}
    rows = session.exec(
        select(UserExpense.category_id, func.count(UserExpense.id))
        .where(UserExpense.category_id.in_(category_ids))
        .group_by(UserExpense.category_id)
    ).all()
    return {cat_id: int(n) for cat_id, n in rows}


def reset_preview(session: Session, family_id: int) -> Dict[str, Any]:
    """
    Where each current category (and its expenses) would land on reset,
    and which defaults would be created.
    """
    current = family_categories(session, family_id)
    counts = _expense_counts(session, [c.id for c in current])
    present = {c.name for c in current}

    preview: List[Dict[str, Any]] = []
    for cat in current:
        preview.append(
            {
                "id": cat.id,
                "name": cat.name,
                "maps_to": match_default_category(cat.name),
                "is_default": cat.name in DEFAULT_NAMES,
                "expense_count": counts.get(cat.id, 0),
            }
        )

    return {
        "categories": preview,
        "will_add": [c["name"] for c in DEFAULT_CATEGORIES if c["name"] not in present],
    }


def reset_to_defaults(session: Session, family_id: int) -> Dict[str, Any]:
    """
    Create missing defaults, move every expense of a custom category onto
    its matching default, then drop the custom categories. One commit.
    """
    current = family_categories(session, family_id)
    by_name = {c.name: c for c in current if c.name in DEFAULT_NAMES}

    created: List[str] = []
    removed: List[str] = []
    moved = 0
    now = utcnow()
    expenses = UserExpense.__table__

    try:
        for cat in DEFAULT_CATEGORIES:
            if cat["name"] not in by_name:
                row = Category(family_id=family_id, created_at=now, **cat)
                session.add(row)
                by_name[cat["name"]] = row
                created.append(cat["name"])
        session.flush()

        conn = session.connection()
        for cat in current:
            if cat.name in DEFAULT_NAMES:
                continue
            target = by_name[match_default_category(cat.name)]
            result = conn.execute(
                update(expenses).where(expenses.c.category_id == cat.id).values(category_id=target.id)
            )
            moved += int(result.rowcount or 0)
            removed.append(cat.name)
            session.delete(cat)

        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Family id=%s reset categories: %d created, %d removed, %d expenses moved", family_id, len(created), len(removed), moved)
    return {"created": created, "removed": removed, "moved_expenses": moved}


def get_family_category(session: Session, family_id: int, category_id: int) -> Optional[Category]:
    cat = session.get(Category, category_id)
    if cat is None or cat.family_id != family_id:
        return None
    return cat


def delete_category(session: Session, family_id: int, category_id: int) -> None:
    cat = get_family_category(session, family_id, category_id)
    if cat is None:
        raise NotFoundError("Category not found")
    if _expense_counts(session, [cat.id]):
        raise ValidationError("Cannot delete category with existing expenses")
    session.delete(cat)
    session.commit()
