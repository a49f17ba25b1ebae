from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from dept_overview.dependencies import get_department_creator, get_overview
from dept_overview.errors import (
    ApiError,
    DepartmentOperationFailed,
    DepartmentValidationError,
    DuplicateDepartmentError,
)
from dept_overview.schemas import (
    DepartmentCreate,
    DepartmentOverviewRead,
    DepartmentRead,
    DepartmentSummaryRead,
)
from dept_overview.services.departments import DepartmentCreator
from dept_overview.services.overview import DepartmentOverview, DepartmentSummary

router = APIRouter(tags=["departments"])


def _to_overview_read(overview: DepartmentOverview, summaries: list[DepartmentSummary]) -> DepartmentOverviewRead:
    return DepartmentOverviewRead(
        summaries=[DepartmentSummaryRead(**item.to_dict()) for item in summaries],
        in_progress=overview.in_progress,
        last_error=overview.last_error,
    )


@router.get("/api/departments/overview", response_model=DepartmentOverviewRead)
async def read_overview(
    q: str | None = Query(default=None, max_length=255),
    overview: DepartmentOverview = Depends(get_overview),
) -> DepartmentOverviewRead:
    return _to_overview_read(overview, overview.search(q))


@router.post("/api/departments/overview/refresh", response_model=DepartmentOverviewRead)
async def refresh_overview(overview: DepartmentOverview = Depends(get_overview)) -> DepartmentOverviewRead:
    await overview.refresh()
    return _to_overview_read(overview, list(overview.summaries))


@router.post(
    "/api/departments",
    response_model=DepartmentRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_department(
    payload: DepartmentCreate,
    creator: DepartmentCreator = Depends(get_department_creator),
) -> DepartmentRead:
    try:
        identity = await creator.create_department(payload.name, payload.positions)
    except DuplicateDepartmentError as exc:
        raise ApiError(status_code=409, code=exc.code, message=exc.message) from exc
    except DepartmentValidationError as exc:
        raise ApiError(status_code=422, code=exc.code, message=exc.message) from exc
    except DepartmentOperationFailed as exc:
        raise ApiError(status_code=503, code=exc.code, message=exc.message) from exc

    return DepartmentRead(
        id=identity.id,
        name=identity.name,
        positions=list(identity.positions) if identity.positions is not None else None,
    )
