"""Unit tests for parameter normalization."""

import numpy as np
import pytest

from tether import ParameterDescriptor, ResourceKind, normalize
from tether.params import (
    hash_args,
    sub_api,
    sub_doc,
    sub_local,
    sub_query,
    sub_query_extra,
    sub_value,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "descriptor, kind, args",
    [
        (sub_doc("users", "u1"), ResourceKind.DOC, ("users", "u1")),
        (sub_query("threads", {"status": "open"}), ResourceKind.QUERY, ("threads", {"status": "open"})),
        (sub_query_extra("threads", {"$count": True}), ResourceKind.QUERY_EXTRA, ("threads", {"$count": True})),
        (sub_local("_page.title"), ResourceKind.LOCAL, ("_page.title",)),
        (sub_value(42), ResourceKind.VALUE, (42,)),
    ],
)
def test_normalizers_tag_the_resource_kind(descriptor, kind, args):
    """Each normalizer produces its kind tag and the constructor arguments in order"""
    assert descriptor.kind is kind
    assert descriptor.args == args


@pytest.mark.unit
def test_sub_api_keeps_the_function_first():
    def fetch_stats(team, limit):
        return {}

    descriptor = sub_api(fetch_stats, "core", 10)

    assert descriptor.kind is ResourceKind.API
    assert descriptor.args == (fetch_stats, "core", 10)


@pytest.mark.unit
@pytest.mark.parametrize("extra_key", ["$count", "$aggregate"])
def test_sub_query_promotes_metadata_queries_to_query_extra(extra_key):
    """Queries asking for counts or aggregates produce a QueryExtra descriptor"""
    descriptor = sub_query("threads", {"status": "open", extra_key: True})

    assert descriptor.kind is ResourceKind.QUERY_EXTRA


@pytest.mark.unit
def test_sub_query_defaults_to_an_empty_query():
    assert sub_query("threads").args == ("threads", {})


@pytest.mark.unit
def test_descriptors_compare_by_structure():
    """Dicts built in a different key order still produce equal descriptors"""
    a = sub_query("threads", {"status": "open", "author": "ann"})
    b = sub_query("threads", {"author": "ann", "status": "open"})

    assert a is not b
    assert a == b
    assert hash(a) == hash(b)
    assert a.signature == b.signature


@pytest.mark.unit
def test_descriptors_of_different_kinds_differ_for_equal_args():
    assert sub_query("threads", {}) != sub_query_extra("threads", {})
    assert sub_value("x") != sub_local("x")


@pytest.mark.unit
def test_normalize_reuses_the_descriptor_for_equal_arguments():
    first = normalize(sub_query, "threads", {"status": "open", "page": 1})
    second = normalize(sub_query, "threads", {"page": 1, "status": "open"})
    third = normalize(sub_query, "threads", {"status": "closed", "page": 1})

    assert first is second
    assert third is not first


@pytest.mark.unit
def test_normalize_keys_on_the_normalizer_function():
    assert normalize(sub_query, "threads", {}).kind is ResourceKind.QUERY
    assert normalize(sub_query_extra, "threads", {}).kind is ResourceKind.QUERY_EXTRA


@pytest.mark.unit
def test_normalizer_does_not_validate_the_collection():
    """Validation of the collection path is left to the resource handle"""
    descriptor = sub_query(123, {"status": "open"})

    assert descriptor.collection == 123


@pytest.mark.unit
def test_api_descriptors_distinguish_functions_by_identity():
    def one():
        return 1

    def two():
        return 1

    assert sub_api(one) == sub_api(one)
    assert sub_api(one) != sub_api(two)


@pytest.mark.unit
def test_hash_args_handles_mixed_key_types():
    """Dicts whose keys cannot be sorted together still hash deterministically"""
    args = ({1: "a", "b": 2},)

    assert hash_args(args) == hash_args(({"b": 2, 1: "a"},))


@pytest.mark.unit
def test_dict_key_types_are_part_of_the_signature():
    assert sub_value({1: "a"}) != sub_value({"1": "a"})
    assert sub_value({True: "a"}) != sub_value({1: "a"})


@pytest.mark.unit
def test_large_arrays_compare_by_full_content():
    signal = np.zeros(2000)
    changed = signal.copy()
    changed[500] = 7.0

    assert sub_value(signal) == sub_value(signal.copy())
    assert sub_value(signal) != sub_value(changed)


@pytest.mark.unit
def test_arrays_with_equal_bytes_differ_by_dtype_and_shape():
    flat = np.zeros(4, dtype=np.int32)

    assert sub_value(flat) != sub_value(flat.astype(np.float32))
    assert sub_value(flat) != sub_value(flat.reshape(2, 2))


@pytest.mark.unit
def test_bound_methods_keep_a_stable_signature():
    class Loader:
        def load(self, team):
            return team

    loader = Loader()

    assert sub_api(loader.load, "core") == sub_api(loader.load, "core")
    assert sub_api(loader.load, "core") != sub_api(Loader().load, "core")


@pytest.mark.unit
def test_inline_lambdas_are_distinct_functions():
    """A callback re-created per render counts as a new argument"""
    make = lambda: (lambda team: team)  # noqa: E731

    assert sub_api(make(), "core") != sub_api(make(), "core")


@pytest.mark.unit
def test_descriptor_accepts_unknown_kind_tags():
    """Unknown kinds are only rejected when a handle is constructed"""
    descriptor = ParameterDescriptor("Bogus", ("x",))

    assert descriptor.kind == "Bogus"
    assert "Bogus" in repr(descriptor)
