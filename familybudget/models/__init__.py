# familybudget/models/__init__.py
# Central import surface for SQLModel table registration.

from .user import Family, User, normalize_email, utcnow
from .email_token import EmailToken, TokenKind
from .category import Category, DEFAULT_CATEGORIES
from .conversation import ChatConversation
from .budget import MonthlyOverview, UserExpense, UserIncome

__all__ = [
    "Family",
    "User",
    "normalize_email",
    "utcnow",
    "EmailToken",
    "TokenKind",
    "Category",
    "DEFAULT_CATEGORIES",
    "ChatConversation",
    "MonthlyOverview",
    "UserIncome",
    "UserExpense",
]
