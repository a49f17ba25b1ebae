from __future__ import annotations

from functools import lru_cache

from dept_overview.db import get_sessionmaker
from dept_overview.gateway import RecordStore, SqlAlchemyRecordStore
from dept_overview.services.departments import DepartmentCreator
from dept_overview.services.overview import DepartmentOverview


@lru_cache
def get_record_store() -> RecordStore:
    return SqlAlchemyRecordStore(get_sessionmaker())


@lru_cache
def get_overview() -> DepartmentOverview:
    return DepartmentOverview(get_record_store())


@lru_cache
def get_department_creator() -> DepartmentCreator:
    return DepartmentCreator(get_record_store(), get_overview())
