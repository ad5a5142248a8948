from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlmodel import select

from familybudget.database import init_db, session_scope
from familybudget.models.budget import MonthlyOverview, UserExpense, UserIncome
from familybudget.models.category import Category, DEFAULT_CATEGORIES
from familybudget.models.user import Family, User, utcnow
from familybudget.services.budget import monthly_salary
from familybudget.services.passwords import hash_password


# ---------------------------------------------------------------------
# Seed data (local demo household)
# ---------------------------------------------------------------------

DEMO_FAMILY_NAME = "Demo Family"
DEMO_PASSWORD = "demo123"

DEMO_USERS: List[Dict[str, str]] = [
    {"email": "john@demo.com", "name": "John Demo"},
    {"email": "jane@demo.com", "name": "Jane Demo"},
]

# Amounts in the "Current" overview
DEMO_INCOME: List[Dict[str, Any]] = [
    {"email": "john@demo.com", "salary_amount": 2500.0, "salary_frequency": "biweekly", "notes": "Software Engineer at TechCorp"},
    {"email": "jane@demo.com", "salary_amount": 4000.0, "salary_frequency": "monthly", "additional_income": 500.0, "notes": "Freelance consulting on the side"},
]

DEMO_EXPENSES: List[Dict[str, Any]] = [
    {"email": "john@demo.com", "category": "Housing", "name": "Mortgage", "amount": 1200.0, "share": 50.0},
    {"email": "john@demo.com", "category": "Transportation", "name": "Car Payment", "amount": 450.0},
    {"email": "jane@demo.com", "category": "Childcare", "name": "Daycare", "amount": 800.0, "share": 50.0},
    {"email": "jane@demo.com", "category": "Food & Groceries", "name": "Groceries", "amount": 600.0, "share": 50.0},
    {"email": "jane@demo.com", "category": "Subscriptions", "name": "Streaming", "amount": 45.0},
]


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def seed_demo(session) -> Family:
    """
    Idempotent: reuses the family of an existing demo user and only adds
    what is missing (users, default categories, a "Current" overview).
    """
    existing: Optional[User] = session.exec(
        select(User).where(User.email == DEMO_USERS[0]["email"])
    ).first()

    if existing:
        family = session.get(Family, existing.family_id)
    else:
        family = Family(name=DEMO_FAMILY_NAME, created_at=utcnow())
        session.add(family)
        session.flush()

    pw_hash = hash_password(DEMO_PASSWORD)
    for row in DEMO_USERS:
        user = session.exec(select(User).where(User.email == row["email"])).first()
        if user:
            continue
        session.add(
            User(
                email=row["email"],
                name=row["name"],
                password_hash=pw_hash,
                family_id=family.id,
                is_verified=True,
                verified_at=utcnow(),
            )
        )

    present = {
        c.name for c in session.exec(select(Category).where(Category.family_id == family.id)).all()
    }
    for cat in DEFAULT_CATEGORIES:
        if cat["name"] not in present:
            session.add(Category(family_id=family.id, **cat))

    session.flush()

    if not session.exec(select(MonthlyOverview).where(MonthlyOverview.family_id == family.id)).first():
        _seed_overview(session, family.id)

    session.flush()
    return family


def _seed_overview(session, family_id: int) -> MonthlyOverview:
    overview = MonthlyOverview(family_id=family_id, name="Current", is_active=True)
    session.add(overview)
    session.flush()

    users = {u.email: u for u in session.exec(select(User).where(User.family_id == family_id)).all()}
    cats = {c.name: c for c in session.exec(select(Category).where(Category.family_id == family_id)).all()}

    for row in DEMO_INCOME:
        salary = row["salary_amount"]
        session.add(
            UserIncome(
                overview_id=overview.id,
                user_id=users[row["email"]].id,
                salary_amount=salary,
                salary_frequency=row["salary_frequency"],
                monthly_salary=monthly_salary(salary, row["salary_frequency"]),
                additional_income=row.get("additional_income", 0.0),
                notes=row.get("notes"),
            )
        )

    for row in DEMO_EXPENSES:
        session.add(
            UserExpense(
                overview_id=overview.id,
                user_id=users[row["email"]].id,
                category_id=cats[row["category"]].id,
                name=row["name"],
                amount=row["amount"],
                is_shared=row.get("share", 100.0) < 100.0,
                share_percentage=row.get("share", 100.0),
            )
        )
    return overview


# ---------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------

def main() -> None:
    # Ensure tables exist (local dev)
    init_db()

    with session_scope() as session:
        family = seed_demo(session)
        family_id = family.id
        users = session.exec(select(User).where(User.family_id == family_id)).all()
        print(f"Seeded demo family id={family_id} with {len(users)} users (password: {DEMO_PASSWORD})")


if __name__ == "__main__":
    main()
