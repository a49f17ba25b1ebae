from __future__ import annotations

import asyncio
import unittest
from typing import Any

from dept_overview.services.overview import REFRESH_FAILED_MESSAGE, DepartmentOverview, DepartmentSummary
from dept_overview.services.resolver import DepartmentIdentity
from fakes import FakeRecordStore, store_error


def _seeded_store() -> FakeRecordStore:
    return FakeRecordStore(
        {
            "departments": [
                {"id": "d1", "name": "Sales", "positions": ["Rep"]},
                {"id": "d2", "name": "Engineering", "positions": ["Developer"]},
                {"id": "d3", "name": "Legal", "positions": []},
            ],
            "employees": [
                {"id": "e1", "department": "Sales"},
                {"id": "e2", "department": "Sales"},
                {"id": "e3", "department": "Engineering"},
            ],
            "attendance": [
                {"id": "a1", "department": "Sales", "status": "Present"},
                {"id": "a2", "department": "Sales", "status": "Absent"},
                {"id": "a3", "department": "Engineering", "status": "Late"},
            ],
        }
    )


def _by_name(summaries: list[DepartmentSummary]) -> dict[str, tuple[int, int]]:
    return {item.identity.name: (item.employee_count, item.attendance_rate) for item in summaries}


class _GatedStore(FakeRecordStore):
    """Holds the first departments read until ``gate`` is set."""

    def __init__(self, collections: dict[str, list[dict[str, Any]]]):
        super().__init__(collections)
        self.gate = asyncio.Event()
        self.first_read_started = asyncio.Event()
        self._department_reads = 0

    async def fetch_all(self, collection: str) -> list[dict[str, Any]]:
        if collection == "departments":
            self._department_reads += 1
            if self._department_reads == 1:
                rows = [dict(row) for row in self.collections["departments"]]
                self.first_read_started.set()
                await self.gate.wait()
                return rows
        return await super().fetch_all(collection)


class DepartmentOverviewRefreshTests(unittest.IsolatedAsyncioTestCase):
    async def test_refresh_builds_summaries_in_resolver_order(self) -> None:
        overview = DepartmentOverview(_seeded_store())

        summaries = await overview.refresh()

        self.assertEqual([item.identity.name for item in summaries], ["Sales", "Engineering", "Legal"])
        self.assertEqual(
            _by_name(summaries),
            {"Sales": (2, 50), "Engineering": (1, 100), "Legal": (0, 0)},
        )
        self.assertEqual(overview.summaries, tuple(summaries))
        self.assertFalse(overview.in_progress)
        self.assertIsNone(overview.last_error)

    async def test_refresh_is_idempotent(self) -> None:
        overview = DepartmentOverview(_seeded_store())

        first = await overview.refresh()
        second = await overview.refresh()

        self.assertEqual(first, second)

    async def test_metrics_run_concurrently_across_departments(self) -> None:
        store = _seeded_store()
        overview = DepartmentOverview(store)

        await overview.refresh()

        self.assertEqual(store.max_in_flight, 6)

    async def test_failure_in_one_department_does_not_affect_others(self) -> None:
        store = _seeded_store()
        store.failing_values["Sales"] = store_error("employees")
        overview = DepartmentOverview(store)

        with self.assertLogs("dept_overview.metrics", level="WARNING"):
            summaries = await overview.refresh()

        self.assertEqual(
            _by_name(summaries),
            {"Sales": (0, 0), "Engineering": (1, 100), "Legal": (0, 0)},
        )
        self.assertIsNone(overview.last_error)

    async def test_unexpected_metric_error_degrades_that_department(self) -> None:
        store = _seeded_store()
        store.failing_values["Engineering"] = RuntimeError("driver crashed")
        overview = DepartmentOverview(store)

        with self.assertLogs("dept_overview.overview", level="ERROR") as captured:
            summaries = await overview.refresh()

        self.assertEqual(_by_name(summaries)["Engineering"], (0, 0))
        self.assertEqual(_by_name(summaries)["Sales"], (2, 50))
        self.assertTrue(all(record.department == "Engineering" for record in captured.records))

    async def test_resolver_failure_returns_empty_and_keeps_previous_view(self) -> None:
        store = _seeded_store()
        overview = DepartmentOverview(store)
        previous = await overview.refresh()
        store.failing_collections.add("departments")

        with self.assertLogs("dept_overview.overview", level="ERROR"):
            result = await overview.refresh()

        self.assertEqual(result, [])
        self.assertEqual(overview.last_error, REFRESH_FAILED_MESSAGE)
        self.assertEqual(overview.summaries, tuple(previous))
        self.assertFalse(overview.in_progress)

    async def test_successful_refresh_clears_last_error(self) -> None:
        store = _seeded_store()
        store.failing_collections.add("departments")
        overview = DepartmentOverview(store)
        with self.assertLogs("dept_overview.overview", level="ERROR"):
            await overview.refresh()

        store.failing_collections.clear()
        await overview.refresh()

        self.assertIsNone(overview.last_error)

    async def test_fallback_departments_are_summarized(self) -> None:
        store = FakeRecordStore(
            {
                "employees": [
                    {"id": "e1", "department": "Support"},
                    {"id": "e2", "department": "Support"},
                ],
                "attendance": [{"id": "a1", "department": "Support", "status": "Late"}],
            }
        )
        overview = DepartmentOverview(store)

        summaries = await overview.refresh()

        self.assertEqual(
            summaries,
            [DepartmentSummary(DepartmentIdentity(name="Support", id="support"), employee_count=2, attendance_rate=100)],
        )

    async def test_older_refresh_settling_late_does_not_overwrite_newer(self) -> None:
        store = _GatedStore({"departments": [{"id": "d1", "name": "Old"}]})
        overview = DepartmentOverview(store)

        slow = asyncio.create_task(overview.refresh())
        await store.first_read_started.wait()
        self.assertTrue(overview.in_progress)

        store.collections["departments"] = [{"id": "d2", "name": "New"}]
        fast_result = await overview.refresh()
        self.assertTrue(overview.in_progress)

        store.gate.set()
        slow_result = await slow

        self.assertEqual([item.identity.name for item in fast_result], ["New"])
        self.assertEqual([item.identity.name for item in slow_result], ["Old"])
        self.assertEqual([item.identity.name for item in overview.summaries], ["New"])
        self.assertFalse(overview.in_progress)


class DepartmentOverviewViewTests(unittest.IsolatedAsyncioTestCase):
    async def test_search_is_case_insensitive_substring(self) -> None:
        overview = DepartmentOverview(_seeded_store())
        await overview.refresh()

        self.assertEqual([item.identity.name for item in overview.search("ENG")], ["Engineering"])
        self.assertEqual([item.identity.name for item in overview.search("al")], ["Sales", "Legal"])
        self.assertEqual(len(overview.search("  ")), 3)
        self.assertEqual(len(overview.search(None)), 3)
        self.assertEqual(overview.search("finance"), [])

    async def test_append_summary_swaps_the_list(self) -> None:
        overview = DepartmentOverview(_seeded_store())
        await overview.refresh()
        before = overview.summaries

        overview.append_summary(DepartmentSummary(DepartmentIdentity(name="Finance", id="x", positions=())))

        self.assertEqual(len(before), 3)
        self.assertEqual([item.identity.name for item in overview.summaries][-1], "Finance")

    async def test_snapshot_to_dict(self) -> None:
        overview = DepartmentOverview(_seeded_store())
        await overview.refresh()

        payload = overview.snapshot().to_dict()

        self.assertFalse(payload["in_progress"])
        self.assertIsNone(payload["last_error"])
        self.assertEqual(
            payload["summaries"][0],
            {"id": "d1", "name": "Sales", "positions": ["Rep"], "employee_count": 2, "attendance_rate": 50},
        )


if __name__ == "__main__":
    unittest.main()
