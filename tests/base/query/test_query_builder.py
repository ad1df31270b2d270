# tests/base/query/test_query_builder.py

import pytest

from async_odm.base.query import QueryBuilder, QueryOperator, QueryOptions
from async_odm.base.validation_exceptions import ValidationError, ValueRangeError


# --- Fixtures ---
@pytest.fixture
def qb() -> QueryBuilder:
    return QueryBuilder()


# --- Construction ---
def test_empty_builder_serializes_to_empty_criteria(qb):
    assert qb.to_json() == {}
    assert qb.get_options() == QueryOptions()


def test_initial_criteria_is_copied():
    initial = {"field": "value"}
    qb = QueryBuilder(initial)
    qb.where({"other": 1})
    assert qb.to_json() == {"field": "value", "other": 1}
    assert initial == {"field": "value"}


def test_initial_criteria_must_be_mapping():
    with pytest.raises(ValidationError, match="must be a mapping"):
        QueryBuilder(["field"])


# --- where ---
def test_where_merges_shallowly(qb):
    qb.where({"a": 1, "b": {"$gt": 2}}).where({"b": 3, "c": 4})
    assert qb.to_json() == {"a": 1, "b": 3, "c": 4}


@pytest.mark.parametrize("bad", ["a=1", 42, None, ["a", 1]], ids=["str", "int", "none", "list"])
def test_where_rejects_non_mapping(qb, bad):
    qb.where({"a": 1})
    with pytest.raises(TypeError):
        qb.where(bad)
    assert qb.to_json() == {"a": 1}


# --- Comparison operators ---
@pytest.mark.parametrize(
    "method, operator, value",
    [
        ("eq", "$eq", "value"),
        ("neq", "$ne", "value"),
        ("gt", "$gt", 0),
        ("gte", "$gte", 0),
        ("lt", "$lt", 0),
        ("lte", "$lte", 0),
    ],
)
def test_comparison_operators(qb, method, operator, value):
    getattr(qb, method)("field", value)
    assert qb.to_json() == {"field": {operator: value}}


def test_operator_enum_values_are_mongo_keys():
    assert QueryOperator.NE.value == "$ne"
    assert QueryOperator.GTE.value == "$gte"


def test_stacked_comparisons_on_same_field_merge(qb):
    qb.gt("field", 0).lt("field", 10)
    assert qb.to_json() == {"field": {"$gt": 0, "$lt": 10}}


def test_stacked_comparisons_keep_plain_value_as_eq():
    qb = QueryBuilder({"field": "value"}).gt("field", 0).lt("field", 10)
    assert qb.to_json() == {"field": {"$eq": "value", "$gt": 0, "$lt": 10}}


def test_same_operator_twice_keeps_last_value(qb):
    qb.gt("field", 0).gt("field", 5)
    assert qb.to_json() == {"field": {"$gt": 5}}


def test_embedded_document_value_is_not_treated_as_operators():
    qb = QueryBuilder({"address": {"city": "Oslo"}}).neq("address", None)
    assert qb.to_json() == {"address": {"$eq": {"city": "Oslo"}, "$ne": None}}


def test_where_after_comparison_overwrites(qb):
    qb.gt("field", 0).where({"field": 3})
    assert qb.to_json() == {"field": 3}


@pytest.mark.parametrize("field_name", ["", None, 3])
def test_comparison_requires_field_name(qb, field_name):
    with pytest.raises(ValidationError, match="Field name"):
        qb.eq(field_name, 1)
    assert qb.to_json() == {}


def test_membership_and_existence(qb):
    qb.in_("role", ("admin", "editor")).nin("tag", ["spam"]).exists("email")
    assert qb.to_json() == {
        "role": {"$in": ["admin", "editor"]},
        "tag": {"$nin": ["spam"]},
        "email": {"$exists": True},
    }


def test_membership_requires_collection(qb):
    with pytest.raises(ValidationError, match="list/set/tuple"):
        qb.in_("role", "admin")


def test_exists_requires_bool(qb):
    with pytest.raises(ValidationError, match="boolean"):
        qb.exists("email", "yes")


# --- Combinators ---
def test_and_with_raw_mappings(qb):
    qb.and_([{"field": {"$gt": 0}}, {"field": {"$lt": 10}}])
    assert qb.to_json() == {"$and": [{"field": {"$gt": 0}}, {"field": {"$lt": 10}}]}


def test_and_with_builders_matches_raw_mappings():
    raw = QueryBuilder().and_([{"field": {"$gt": 0}}, {"field": {"$lt": 10}}])
    built = QueryBuilder().and_([QueryBuilder().gt("field", 0), QueryBuilder().lt("field", 10)])
    assert built.to_json() == raw.to_json()


def test_or_with_mixed_branches():
    qb = QueryBuilder().or_([{"artist": "test"}, QueryBuilder().eq("title", "test")])
    assert qb.to_json() == {"$or": [{"artist": "test"}, {"title": {"$eq": "test"}}]}


def test_combinator_rejects_bad_branch(qb):
    with pytest.raises(ValidationError, match="branch 1"):
        qb.or_([{"a": 1}, "b"])
    assert qb.to_json() == {}


def test_combinator_rejects_non_list(qb):
    with pytest.raises(ValidationError, match="list of criteria"):
        qb.and_({"a": 1})


# --- Options ---
def test_select_flattens_and_overwrites(qb):
    qb.select("a", ["b", "c"]).select(["d"], "e", "d")
    assert qb.get_options().projection == ["d", "e"]


def test_select_rejects_non_string(qb):
    with pytest.raises(ValidationError):
        qb.select("a", 1)
    assert qb.get_options().projection is None


def test_sort_merges_per_key(qb):
    qb.sort({"a": 1}).sort({"b": -1}).sort({"a": 0})
    assert qb.get_options().sort == {"a": 0, "b": -1}


def test_sort_rejects_non_mapping(qb):
    with pytest.raises(TypeError):
        qb.sort([("a", 1)])


@pytest.mark.parametrize("n", [0, 1, 7, 10_000])
def test_skip_and_limit_store_value(qb, n):
    qb.skip(n).limit(n)
    options = qb.get_options()
    assert options.skip == n
    assert options.limit == n


@pytest.mark.parametrize("bad", [-1, -100, 1.5, "3", None, True], ids=["neg1", "neg100", "float", "str", "none", "bool"])
def test_skip_and_limit_reject_invalid_values(qb, bad):
    qb.skip(2).limit(3)
    with pytest.raises(ValueRangeError):
        qb.skip(bad)
    with pytest.raises(ValueError):
        qb.limit(bad)
    options = qb.get_options()
    assert options.skip == 2
    assert options.limit == 3


def test_get_options_returns_a_copy(qb):
    qb.sort({"a": 1})
    qb.get_options().sort["b"] = 1
    assert qb.get_options().sort == {"a": 1}


def test_to_json_does_not_expose_internal_state(qb):
    qb.eq("a", 1)
    qb.to_json()["b"] = 2
    qb.to_json()["a"]["$eq"] = 2
    assert qb.to_json() == {"a": {"$eq": 1}}


def test_where_keeps_its_own_copy_of_nested_criteria(qb):
    criteria = {"age": {"$gt": 18}}
    qb.where(criteria)
    criteria["age"]["$gt"] = 99
    assert qb.to_json() == {"age": {"$gt": 18}}


def test_branch_builders_do_not_share_state(qb):
    branch = QueryBuilder().eq("a", 1)
    qb.or_([branch])
    qb.to_json()["$or"][0]["a"]["$eq"] = 2
    branch.eq("a", 3)
    assert qb.to_json() == {"$or": [{"a": {"$eq": 1}}]}
    assert branch.to_json() == {"a": {"$eq": 3}}


# --- Options translation ---
def test_options_to_find_kwargs():
    qb = QueryBuilder().sort({"age": -1, "name": 1}).skip(5).limit(10).select("name")
    assert qb.get_options().to_find_kwargs() == {
        "sort": [("age", -1), ("name", 1)],
        "skip": 5,
        "limit": 10,
        "projection": ["name"],
    }


def test_empty_options_translate_to_no_kwargs():
    assert QueryOptions().to_find_kwargs() == {}
    assert QueryOptions().to_count_kwargs() == {}


def test_count_kwargs_drop_sort_projection_and_zero_limit():
    options = QueryOptions(sort={"a": 1}, skip=2, limit=0, projection=["a"])
    assert options.to_count_kwargs() == {"skip": 2}


def test_options_repr():
    assert repr(QueryOptions(skip=1, limit=2)) == "QueryOptions(skip=1, limit=2)"
