from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from .departments import visible_departments
from .errors import StoreFailure, VisibilityLookupFailed
from .store import get_staff_by_departments


logger = logging.getLogger("taskhub.visibility")


def visible_staff_ids(db: Session, department: Optional[str]) -> list[int]:
    """Return IDs of staff in any department visible from `department`.

    A viewer without a department sees nobody. A failed lookup raises
    `VisibilityLookupFailed` so it cannot be mistaken for an empty result.
    """
    if not department:
        return []

    departments = visible_departments(department)
    try:
        rows = get_staff_by_departments(db, departments)
    except StoreFailure as e:
        logger.error("Failed to fetch staff visible from department %r: %s", department, e)
        raise VisibilityLookupFailed("Failed to fetch department staff") from e
    return [int(s.id) for s in rows]
