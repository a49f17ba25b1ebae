from __future__ import annotations

import logging

from dept_overview.errors import StoreError
from dept_overview.gateway import RecordStore
from dept_overview.models import ATTENDED_STATUSES

logger = logging.getLogger("dept_overview.metrics")


def percent_half_up(part: int, total: int) -> int:
    if total <= 0:
        return 0
    # Integer form of floor(part / total * 100 + 0.5); avoids float ties.
    return (part * 200 + total) // (total * 2)


async def attendance_rate(store: RecordStore, department_name: str) -> int:
    try:
        records = await store.fetch_where("attendance", "department", department_name)
    except StoreError as exc:
        logger.warning(
            "attendance_rate_failed",
            extra={"department": department_name, "collection": exc.collection, "error": str(exc)},
        )
        return 0

    if not records:
        return 0

    attended = sum(1 for record in records if record.get("status") in ATTENDED_STATUSES)
    return percent_half_up(attended, len(records))


async def employee_count(store: RecordStore, department_name: str) -> int:
    try:
        records = await store.fetch_where("employees", "department", department_name)
    except StoreError as exc:
        logger.warning(
            "employee_count_failed",
            extra={"department": department_name, "collection": exc.collection, "error": str(exc)},
        )
        return 0
    return len(records)
