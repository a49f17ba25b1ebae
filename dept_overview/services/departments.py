from __future__ import annotations

import enum
import logging
from collections.abc import Sequence

from dept_overview.errors import (
    DepartmentOperationFailed,
    DepartmentValidationError,
    DuplicateDepartmentError,
    StoreConflictError,
    StoreError,
)
from dept_overview.gateway import RecordStore
from dept_overview.services.overview import DepartmentOverview, DepartmentSummary
from dept_overview.services.resolver import DepartmentIdentity

logger = logging.getLogger("dept_overview.departments")


class MutationState(str, enum.Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    REJECTED = "REJECTED"
    CHECKING_DUPLICATE = "CHECKING_DUPLICATE"
    INSERTING = "INSERTING"
    FAILED = "FAILED"
    COMMITTED = "COMMITTED"


_ALLOWED_TRANSITIONS: dict[MutationState, set[MutationState]] = {
    MutationState.IDLE: {MutationState.VALIDATING},
    MutationState.VALIDATING: {MutationState.REJECTED, MutationState.CHECKING_DUPLICATE},
    MutationState.CHECKING_DUPLICATE: {MutationState.REJECTED, MutationState.INSERTING, MutationState.FAILED},
    MutationState.INSERTING: {MutationState.FAILED, MutationState.COMMITTED},
    MutationState.REJECTED: {MutationState.IDLE},
    MutationState.FAILED: {MutationState.IDLE},
    MutationState.COMMITTED: {MutationState.IDLE},
}

_TERMINAL_STATES = frozenset({MutationState.REJECTED, MutationState.FAILED, MutationState.COMMITTED})


class CreationAttempt:
    def __init__(self, name: str):
        self.name = name
        self.state = MutationState.IDLE
        self.history: list[MutationState] = [MutationState.IDLE]

    @property
    def outcome(self) -> MutationState | None:
        for state in reversed(self.history):
            if state in _TERMINAL_STATES:
                return state
        return None

    def move(self, target: MutationState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid department creation transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)


def validate_department_input(name: str | None, positions: Sequence[str] | None) -> tuple[str, list[str]]:
    clean_name = (name or "").strip()
    if not clean_name:
        raise DepartmentValidationError("DEPARTMENT_NAME_REQUIRED", "Please enter a department name.")

    clean_positions: list[str] = []
    for position in positions or []:
        value = (position or "").strip()
        if not value:
            raise DepartmentValidationError("POSITION_REQUIRED", "Please fill in all position fields.")
        clean_positions.append(value)
    return clean_name, clean_positions


class DepartmentCreator:
    """Validates and stores new departments for a ``DepartmentOverview``.

    The name is checked against the overview's current list first, then
    against the store right before insert. The unique index on the store side
    is what actually guarantees uniqueness; the checks give an early answer.
    """

    def __init__(self, store: RecordStore, overview: DepartmentOverview):
        self._store = store
        self._overview = overview
        self.last_attempt: CreationAttempt | None = None

    async def create_department(self, name: str, positions: Sequence[str] | None = None) -> DepartmentIdentity:
        attempt = CreationAttempt(name)
        self.last_attempt = attempt
        try:
            return await self._run(attempt, name, positions)
        finally:
            if attempt.state in _TERMINAL_STATES:
                attempt.move(MutationState.IDLE)

    async def _run(
        self,
        attempt: CreationAttempt,
        name: str,
        positions: Sequence[str] | None,
    ) -> DepartmentIdentity:
        attempt.move(MutationState.VALIDATING)
        try:
            clean_name, clean_positions = validate_department_input(name, positions)
            if self._exists_locally(clean_name):
                raise DuplicateDepartmentError(clean_name)
        except DepartmentValidationError as exc:
            attempt.move(MutationState.REJECTED)
            logger.info("department_create_rejected", extra={"department": name, "code": exc.code})
            raise

        attempt.move(MutationState.CHECKING_DUPLICATE)
        try:
            existing = await self._store.fetch_where("departments", "name", clean_name, ignore_case=True)
        except StoreError as exc:
            attempt.move(MutationState.FAILED)
            logger.error(
                "department_duplicate_check_failed",
                extra={"department": clean_name, "collection": exc.collection, "error": str(exc)},
            )
            raise DepartmentOperationFailed() from exc
        if existing:
            attempt.move(MutationState.REJECTED)
            logger.info(
                "department_create_rejected",
                extra={"department": clean_name, "code": "DEPARTMENT_ALREADY_EXISTS"},
            )
            raise DuplicateDepartmentError(clean_name)

        attempt.move(MutationState.INSERTING)
        try:
            new_id = await self._store.insert("departments", {"name": clean_name, "positions": clean_positions})
        except StoreConflictError as exc:
            attempt.move(MutationState.FAILED)
            logger.warning("department_create_conflict", extra={"department": clean_name})
            raise DuplicateDepartmentError(clean_name) from exc
        except StoreError as exc:
            attempt.move(MutationState.FAILED)
            logger.error(
                "department_create_failed",
                extra={"department": clean_name, "collection": exc.collection, "error": str(exc)},
            )
            raise DepartmentOperationFailed() from exc

        attempt.move(MutationState.COMMITTED)
        identity = DepartmentIdentity(name=clean_name, id=new_id, positions=tuple(clean_positions))
        self._overview.append_summary(DepartmentSummary(identity=identity))
        logger.info("department_created", extra={"department": clean_name, "department_id": new_id})

        await self._overview.refresh()
        return identity

    def _exists_locally(self, name: str) -> bool:
        key = name.lower()
        return any(item.identity.name_key == key for item in self._overview.summaries)
