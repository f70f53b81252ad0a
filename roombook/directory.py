"""Employee directory used when picking attendees."""
from __future__ import annotations

import unicodedata
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from .models import User


def _collation_key(value: str) -> str:
    return unicodedata.normalize("NFKC", value).casefold()


def user_sort_key(user: User) -> Tuple[int, str, str, str]:
    """Departments alphabetically with unassigned users last, then names."""

    department = (user.department or "").strip()
    name = user.name or ""
    return (0 if department else 1, _collation_key(department), _collation_key(name), name)


def list_users(db: Session, department: Optional[str] = None, limit: int = 2000) -> List[User]:
    query = db.query(User)
    if department:
        query = query.filter(User.department == department.strip())
    return sorted(query.limit(limit).all(), key=user_sort_key)
