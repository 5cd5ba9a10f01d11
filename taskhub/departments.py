"""Department visibility table.

Each entry already lists every department the key may see, itself included.
Nothing here walks a tree; adding a department means listing its full visible
set explicitly.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional


_SALES = ("Sales Director", "Sales Manager", "Account Managers")
_CONSULTANCY = ("Consultancy Division Director", "Consultant")
_SOLUTIONING = ("System Solutioning Division Director", "Developers", "Support Team")
_ENGINEERING = (
    "Engineering Operation Division Director",
    "Senior Engineers",
    "Junior Engineers",
    "Call Centre",
    "Operations Planning Team",
)
_HR = ("HR and Admin Director", "HR Team", "L&D Team", "Admin Team")
_FINANCE = ("Finance Director", "Finance Managers", "Finance Executive")
_IT = ("IT Director", "IT Team")

_RAW_HIERARCHY: dict[str, tuple[str, ...]] = {
    "Managing Director": ("Managing Director",)
    + _SALES
    + _CONSULTANCY
    + _SOLUTIONING
    + _ENGINEERING
    + _HR
    + _FINANCE
    + _IT,
    "Sales Director": _SALES,
    "Sales Manager": ("Sales Manager", "Account Managers"),
    "Account Managers": ("Account Managers",),
    "Consultancy Division Director": _CONSULTANCY,
    "Consultant": ("Consultant",),
    "System Solutioning Division Director": _SOLUTIONING,
    "Developers": ("Developers",),
    "Support Team": ("Support Team",),
    "Engineering Operation Division Director": _ENGINEERING,
    "Senior Engineers": ("Senior Engineers",),
    "Junior Engineers": ("Junior Engineers",),
    "Call Centre": ("Call Centre",),
    "Operations Planning Team": ("Operations Planning Team",),
    "HR and Admin Director": _HR,
    "HR Team": ("HR Team",),
    "L&D Team": ("L&D Team",),
    "Admin Team": ("Admin Team",),
    "Finance Director": _FINANCE,
    "Finance Managers": ("Finance Managers", "Finance Executive"),
    "Finance Executive": ("Finance Executive",),
    "IT Director": _IT,
    "IT Team": ("IT Team",),
}

DEPARTMENT_HIERARCHY: Mapping[str, frozenset[str]] = MappingProxyType(
    {name: frozenset(visible) for name, visible in _RAW_HIERARCHY.items()}
)


def visible_departments(department: Optional[str]) -> frozenset[str]:
    """Return every department `department` may see.

    Unknown departments see only themselves. A missing department sees nothing.
    """
    if not department:
        return frozenset()
    return DEPARTMENT_HIERARCHY.get(department, frozenset({department}))


def can_view_department(viewer_department: Optional[str], target_department: Optional[str]) -> bool:
    if not viewer_department or not target_department:
        return False
    return target_department in visible_departments(viewer_department)
