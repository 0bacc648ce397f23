import asyncio
import unittest

from app.core.errors import ExecutionTimeout, InvalidQuery, QueryCancelled
from app.schemas.query import parse_query_params
from app.services.pagination import PaginateOptions, build_page_meta, paginate
from app.services.query_operators import OperatorKind
from app.services.query_predicates import Leaf


class _FakeHandle:
    name = "events"

    def __init__(self, rows=(), total=0, delay=0.0, error=None):
        self.rows = list(rows)
        self.total = total
        self.delay = delay
        self.error = error
        self.plans = []
        self.cancelled = False

    def field_names(self):
        return ["id", "title"]

    def relation_names(self):
        return ["category"]

    async def execute(self, plan):
        self.plans.append(plan)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.rows[plan.skip : plan.skip + plan.take], self.total

    def cancel(self):
        self.cancelled = True


class PageMetaTests(unittest.TestCase):
    def test_middle_page(self):
        meta = build_page_meta(2, 10, 25)
        self.assertEqual(meta.total_pages, 3)
        self.assertTrue(meta.has_next_page)
        self.assertTrue(meta.has_previous_page)
        self.assertEqual(meta.items, 10)

    def test_empty_result(self):
        meta = build_page_meta(1, 10, 0)
        self.assertEqual(meta.total_pages, 0)
        self.assertFalse(meta.has_next_page)
        self.assertFalse(meta.has_previous_page)

    def test_last_page(self):
        meta = build_page_meta(3, 10, 25)
        self.assertFalse(meta.has_next_page)
        self.assertTrue(meta.has_previous_page)

    def test_page_past_the_end(self):
        meta = build_page_meta(9, 10, 25)
        self.assertFalse(meta.has_next_page)
        self.assertEqual(meta.current_page, 9)


class PaginateTests(unittest.IsolatedAsyncioTestCase):
    async def test_single_round_trip_with_meta(self):
        handle = _FakeHandle(rows=[{"id": i} for i in range(25)], total=25)
        result = await paginate(handle, parse_query_params({"page": "2", "limit": "10"}))
        self.assertEqual(len(handle.plans), 1)
        self.assertEqual(handle.plans[0].skip, 10)
        self.assertEqual(handle.plans[0].take, 10)
        self.assertEqual([row["id"] for row in result.data], list(range(10, 20)))
        self.assertEqual(result.meta.total_items, 25)
        self.assertEqual(result.meta.total_pages, 3)

    async def test_options_reach_the_plan(self):
        handle = _FakeHandle()
        await paginate(
            handle,
            parse_query_params({"search": "law", "loadAll": "1"}),
            PaginateOptions(default_search_fields=("title",), mandatory={"published": True}),
        )
        plan = handle.plans[0]
        self.assertEqual(plan.relations, ("category",))
        self.assertEqual(plan.collection, "events")
        self.assertIn(Leaf("published", OperatorKind.EQ, True), plan.predicate.items)

    async def test_serializer_is_applied(self):
        handle = _FakeHandle(rows=[{"id": 1}], total=1)
        result = await paginate(handle, parse_query_params({}), PaginateOptions(serialize=lambda row: row["id"]))
        self.assertEqual(result.data, [1])

    async def test_timeout_cancels_handle(self):
        handle = _FakeHandle(delay=1.0)
        with self.assertLogs("app.query", level="WARNING"):
            with self.assertRaises(ExecutionTimeout) as ctx:
                await paginate(handle, parse_query_params({}), PaginateOptions(timeout=0.01))
        self.assertEqual(ctx.exception.status_code, 504)
        self.assertTrue(handle.cancelled)

    async def test_caller_cancellation(self):
        handle = _FakeHandle(delay=1.0)
        task = asyncio.create_task(paginate(handle, parse_query_params({})))
        await asyncio.sleep(0.01)
        task.cancel()
        with self.assertRaises(QueryCancelled) as ctx:
            await task
        self.assertEqual(ctx.exception.status_code, 499)
        self.assertTrue(handle.cancelled)

    async def test_invalid_query_propagates_without_cancel(self):
        handle = _FakeHandle(error=InvalidQuery('Unknown field "nope"'))
        with self.assertRaises(InvalidQuery):
            await paginate(handle, parse_query_params({}))
        self.assertFalse(handle.cancelled)


if __name__ == "__main__":
    unittest.main()
