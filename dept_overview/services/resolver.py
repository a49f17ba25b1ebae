from __future__ import annotations

import re
from dataclasses import dataclass

from dept_overview.gateway import Record, RecordStore

_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class DepartmentIdentity:
    name: str
    id: str | None = None
    # None for departments inferred from employee records.
    positions: tuple[str, ...] | None = None

    @property
    def name_key(self) -> str:
        return self.name.lower()


def slugify(name: str) -> str:
    return _WHITESPACE_RUN.sub("-", name).lower()


def _identity_from_department(record: Record) -> DepartmentIdentity:
    raw_id = record.get("id")
    positions = record.get("positions") or []
    return DepartmentIdentity(
        name=record.get("name") or "",
        id=str(raw_id) if raw_id is not None else None,
        positions=tuple(str(item) for item in positions),
    )


async def resolve_departments(store: RecordStore) -> list[DepartmentIdentity]:
    """Return the department list the overview is built from.

    Registered departments win. When none are registered yet, departments are
    inferred from the distinct ``department`` values on employee records
    (case-sensitive, first-seen order) with slug identifiers.

    Store failures propagate to the caller.
    """
    departments = await store.fetch_all("departments")
    if departments:
        return [_identity_from_department(record) for record in departments]

    employees = await store.fetch_all("employees")
    seen: dict[str, None] = {}
    for record in employees:
        department_name = record.get("department")
        if isinstance(department_name, str) and department_name.strip():
            seen.setdefault(department_name, None)

    return [DepartmentIdentity(name=name, id=slugify(name)) for name in seen]
