import json
import unittest
from unittest.mock import patch

from app.core.config import settings
from app.core.errors import QueryValidationError
from app.schemas.query import FilterCondition, FilterGroup, parse_query_params
from app.services.query_compiler import (
    SortKey,
    compile_condition,
    compile_filter,
    compile_projection,
    compile_query,
    compile_relations,
    compile_search,
    compile_sort,
    merge_predicates,
)
from app.services.query_operators import OperatorKind
from app.services.query_predicates import TRUE, And, Leaf, Or, is_true


class _Meta:
    def field_names(self):
        return ["id", "title", "published"]

    def relation_names(self):
        return ["category", "author"]


def _group(data):
    return FilterGroup.model_validate(data)


NESTED = {
    "operator": "and",
    "conditions": [{"field": "status", "operator": "eq", "value": "active"}],
    "groups": [
        {
            "operator": "or",
            "conditions": [
                {"field": "age", "operator": "gte", "value": 18},
                {"field": "age", "operator": "lt", "value": 13},
            ],
        }
    ],
}


class FilterCompilerTests(unittest.TestCase):
    def test_nested_groups_keep_their_boolean_shape(self):
        predicate = compile_filter(_group(NESTED))
        self.assertEqual(
            predicate,
            And(
                (
                    Leaf("status", OperatorKind.EQ, "active"),
                    Or((Leaf("age", OperatorKind.GTE, 18), Leaf("age", OperatorKind.LT, 13))),
                )
            ),
        )

    def test_compilation_is_deterministic(self):
        self.assertEqual(compile_filter(_group(NESTED)), compile_filter(_group(NESTED)))

    def test_repeated_fields_under_and_are_all_kept(self):
        predicate = compile_filter(
            _group(
                {
                    "conditions": [
                        {"field": "age", "operator": "gte", "value": 18},
                        {"field": "age", "operator": "lte", "value": 30},
                    ]
                }
            )
        )
        self.assertEqual(
            predicate,
            And((Leaf("age", OperatorKind.GTE, 18), Leaf("age", OperatorKind.LTE, 30))),
        )

    def test_missing_filter_and_empty_group_are_true(self):
        self.assertTrue(is_true(compile_filter(None)))
        self.assertTrue(is_true(compile_filter(_group({"operator": "or"}))))

    def test_empty_subgroup_is_dropped_inside_or(self):
        predicate = compile_filter(
            _group({"operator": "or", "conditions": [{"field": "a", "operator": "eq", "value": 1}], "groups": [{}]})
        )
        self.assertEqual(predicate, Leaf("a", OperatorKind.EQ, 1))

    def test_operator_token_is_case_insensitive_for_groups(self):
        self.assertEqual(_group({"operator": "OR"}).operator, "or")

    def test_malformed_condition_is_dropped_by_default(self):
        condition = FilterCondition(field="age", operator="between", value=[1])
        with self.assertLogs("app.query", level="WARNING"):
            self.assertTrue(is_true(compile_condition(condition, strict=False)))

    def test_unknown_operator_is_rejected_in_strict_mode(self):
        condition = FilterCondition(field="age", operator="regex", value="x")
        with self.assertRaises(QueryValidationError) as ctx:
            compile_condition(condition, strict=True)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_strict_mode_follows_settings(self):
        condition = FilterCondition(field="age", operator="in", value=None)
        with patch.object(settings, "QUERY_STRICT_CONDITIONS", True):
            with self.assertRaises(QueryValidationError):
                compile_condition(condition)

    def test_depth_limit(self):
        group = {"conditions": [{"field": "a", "operator": "eq", "value": 1}]}
        for _ in range(settings.QUERY_FILTER_MAX_DEPTH):
            group = {"groups": [group]}
        with self.assertRaises(QueryValidationError):
            compile_filter(_group(group))


class SearchCompilerTests(unittest.TestCase):
    def test_blank_term_is_true(self):
        self.assertTrue(is_true(compile_search("   ", ["title"])))
        self.assertTrue(is_true(compile_search(None, ["title"])))

    def test_term_without_fields_is_true(self):
        self.assertTrue(is_true(compile_search("law", [], [])))

    def test_explicit_fields_win_over_defaults(self):
        predicate = compile_search(" law ", ["title", "description"], ["location"])
        self.assertEqual(
            predicate,
            Or(
                (
                    Leaf("title", OperatorKind.CONTAINS, "law"),
                    Leaf("description", OperatorKind.CONTAINS, "law"),
                )
            ),
        )

    def test_single_default_field(self):
        self.assertEqual(compile_search("law", None, ["title"]), Leaf("title", OperatorKind.CONTAINS, "law"))

    def test_invalid_search_field(self):
        with self.assertRaises(QueryValidationError):
            compile_search("law", ["title;drop"])


class SortCompilerTests(unittest.TestCase):
    def test_directions_pair_by_index_and_reuse_last(self):
        keys = compile_sort("title,category.name,created_at", "asc,desc")
        self.assertEqual(
            keys,
            (
                SortKey(("title",), "ASC"),
                SortKey(("category", "name"), "DESC"),
                SortKey(("created_at",), "DESC"),
            ),
        )
        self.assertEqual(keys[1].relations, ("category",))
        self.assertEqual(keys[1].field, "name")

    def test_default_direction_is_desc(self):
        self.assertEqual(compile_sort("title"), (SortKey(("title",), "DESC"),))

    def test_repeated_paths_keep_first_occurrence(self):
        self.assertEqual(compile_sort("title,title", "ASC,DESC"), (SortKey(("title",), "ASC"),))

    def test_invalid_direction(self):
        with self.assertRaises(QueryValidationError):
            compile_sort("title", "sideways")

    def test_no_sort(self):
        self.assertEqual(compile_sort(None), ())


class ProjectionAndRelationTests(unittest.TestCase):
    def test_projection_subtracts_exclusions(self):
        self.assertEqual(compile_projection(["id", "title", "slug"], ["slug"]), frozenset({"id", "title"}))

    def test_exclude_alone_does_not_narrow(self):
        self.assertIsNone(compile_projection([], ["slug"]))

    def test_relations_are_deduplicated_and_ordered_by_depth(self):
        self.assertEqual(
            compile_relations(["author.blogs", "category", "author", "category"]),
            ("category", "author", "author.blogs"),
        )

    def test_load_all_uses_metadata(self):
        self.assertEqual(compile_relations(["ignored"], load_all=True, metadata=_Meta()), ("author", "category"))

    def test_load_all_without_metadata_loads_nothing(self):
        with self.assertLogs("app.query", level="WARNING"):
            self.assertEqual(compile_relations([], load_all=True), ())


class MergeTests(unittest.TestCase):
    def test_mandatory_and_filter_and_search_are_distributed(self):
        a = Leaf("status", OperatorKind.EQ, "a")
        b = Leaf("status", OperatorKind.EQ, "b")
        s = Leaf("title", OperatorKind.CONTAINS, "x")
        merged = merge_predicates(Or((a, b)), s, {"published": True})
        m = Leaf("published", OperatorKind.EQ, True)
        self.assertEqual(merged, Or((And((m, a, s)), And((m, b, s)))))

    def test_all_empty_is_true(self):
        self.assertTrue(is_true(merge_predicates(TRUE, TRUE, None)))

    def test_compile_query_builds_a_plan(self):
        query = parse_query_params(
            {
                "page": "3",
                "limit": "20",
                "sortBy": "title",
                "sortOrder": "ASC",
                "search": "law",
                "filter": json.dumps(NESTED),
                "select": "id,title",
                "relations": "category",
            }
        )
        plan = compile_query(
            query,
            collection="events",
            metadata=_Meta(),
            default_search_fields=("title",),
            mandatory={"published": True},
            additional_relations=("author",),
        )
        self.assertEqual(plan.collection, "events")
        self.assertEqual(plan.skip, 40)
        self.assertEqual(plan.take, 20)
        self.assertEqual(plan.order, (SortKey(("title",), "ASC"),))
        self.assertEqual(plan.projection, frozenset({"id", "title"}))
        self.assertEqual(plan.relations, ("category", "author"))
        age = Or((Leaf("age", OperatorKind.GTE, 18), Leaf("age", OperatorKind.LT, 13)))
        self.assertEqual(
            plan.predicate,
            And(
                (
                    Leaf("published", OperatorKind.EQ, True),
                    Leaf("status", OperatorKind.EQ, "active"),
                    age,
                    Leaf("title", OperatorKind.CONTAINS, "law"),
                )
            ),
        )


if __name__ == "__main__":
    unittest.main()
