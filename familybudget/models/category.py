from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


# Seeded into every new family and restored by POST /categories/reset
DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {"name": "Housing", "icon": "🏠", "color": "#10b981"},
    {"name": "Utilities", "icon": "💡", "color": "#3b82f6"},
    {"name": "Insurance", "icon": "🛡️", "color": "#8b5cf6"},
    {"name": "Transportation", "icon": "🚗", "color": "#ec4899"},
    {"name": "Childcare", "icon": "👶", "color": "#06b6d4"},
    {"name": "Healthcare", "icon": "🏥", "color": "#14b8a6"},
    {"name": "Food & Groceries", "icon": "🛒", "color": "#84cc16"},
    {"name": "Subscriptions", "icon": "📱", "color": "#ef4444"},
    {"name": "Debt Payments", "icon": "💳", "color": "#f97316"},
    {"name": "Savings", "icon": "💰", "color": "#22c55e"},
    {"name": "Entertainment", "icon": "🎬", "color": "#a855f7"},
    {"name": "Other", "icon": "📦", "color": "#f59e0b"},
]


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: Optional[int] = Field(default=None, primary_key=True)

    family_id: int = Field(foreign_key="families.id", index=True)

    name: str
    icon: str = Field(default="📦")
    color: str = Field(default="#6b7280")

    created_at: datetime = Field(default_factory=utcnow, index=True)
