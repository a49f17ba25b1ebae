from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from dept_overview.errors import StoreError
from dept_overview.gateway import RecordStore
from dept_overview.services.metrics import attendance_rate, employee_count
from dept_overview.services.resolver import DepartmentIdentity, resolve_departments

logger = logging.getLogger("dept_overview.overview")

REFRESH_FAILED_MESSAGE = "Could not load departments. Please try again."


@dataclass(frozen=True, slots=True)
class DepartmentSummary:
    identity: DepartmentIdentity
    employee_count: int = 0
    attendance_rate: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.identity.id,
            "name": self.identity.name,
            "positions": list(self.identity.positions) if self.identity.positions is not None else None,
            "employee_count": self.employee_count,
            "attendance_rate": self.attendance_rate,
        }


@dataclass(frozen=True, slots=True)
class OverviewSnapshot:
    summaries: tuple[DepartmentSummary, ...]
    in_progress: bool
    last_error: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "summaries": [item.to_dict() for item in self.summaries],
            "in_progress": self.in_progress,
            "last_error": self.last_error,
        }


class DepartmentOverview:
    """Per-department employee count and attendance rate view.

    ``refresh`` rebuilds the whole list and swaps it in one assignment. Refreshes
    may overlap; a result is applied only if no newer refresh has been applied
    before it settles, so an older run can never overwrite a newer one.
    """

    def __init__(self, store: RecordStore):
        self._store = store
        self._summaries: tuple[DepartmentSummary, ...] = ()
        self._last_error: str | None = None
        self._running = 0
        self._generation = 0
        self._applied_generation = 0

    @property
    def summaries(self) -> tuple[DepartmentSummary, ...]:
        return self._summaries

    @property
    def in_progress(self) -> bool:
        return self._running > 0

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def snapshot(self) -> OverviewSnapshot:
        return OverviewSnapshot(
            summaries=self._summaries,
            in_progress=self.in_progress,
            last_error=self._last_error,
        )

    def search(self, term: str | None) -> list[DepartmentSummary]:
        needle = (term or "").strip().lower()
        if not needle:
            return list(self._summaries)
        return [item for item in self._summaries if needle in item.identity.name.lower()]

    def append_summary(self, summary: DepartmentSummary) -> None:
        self._summaries = (*self._summaries, summary)

    async def refresh(self) -> list[DepartmentSummary]:
        self._generation += 1
        generation = self._generation
        self._running += 1
        try:
            try:
                identities = await resolve_departments(self._store)
            except Exception as exc:
                logger.exception(
                    "department_resolve_failed",
                    extra={
                        "generation": generation,
                        "collection": exc.collection if isinstance(exc, StoreError) else None,
                    },
                )
                self._apply_error(generation)
                return []

            summaries = tuple(
                await asyncio.gather(*(self._summarize(identity) for identity in identities))
            )
            self._apply(generation, summaries)
            return list(summaries)
        finally:
            self._running -= 1

    async def _summarize(self, identity: DepartmentIdentity) -> DepartmentSummary:
        count_result, rate_result = await asyncio.gather(
            employee_count(self._store, identity.name),
            attendance_rate(self._store, identity.name),
            return_exceptions=True,
        )
        return DepartmentSummary(
            identity=identity,
            employee_count=self._metric_or_zero(count_result, identity, "employee_count"),
            attendance_rate=self._metric_or_zero(rate_result, identity, "attendance_rate"),
        )

    @staticmethod
    def _metric_or_zero(result: int | BaseException, identity: DepartmentIdentity, metric: str) -> int:
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.error(
                "department_metric_failed",
                exc_info=(type(result), result, result.__traceback__),
                extra={"department": identity.name, "metric": metric},
            )
            return 0
        return result

    def _is_stale(self, generation: int) -> bool:
        if generation < self._applied_generation:
            logger.info(
                "department_refresh_superseded",
                extra={"generation": generation, "applied_generation": self._applied_generation},
            )
            return True
        return False

    def _apply(self, generation: int, summaries: tuple[DepartmentSummary, ...]) -> None:
        if self._is_stale(generation):
            return
        self._applied_generation = generation
        self._summaries = summaries
        self._last_error = None
        logger.info(
            "department_refresh_complete",
            extra={"generation": generation, "department_count": len(summaries)},
        )

    def _apply_error(self, generation: int) -> None:
        if self._is_stale(generation):
            return
        # Previously applied summaries stay visible.
        self._applied_generation = generation
        self._last_error = REFRESH_FAILED_MESSAGE
