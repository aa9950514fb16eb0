"""
Shared pytest fixtures and configuration for Tether tests.
"""

import pytest

from tests.utils.handles import Gate, make_controlled_type, make_recorded_type
from tether import Batcher, MemoryConnection, Model, ResourceKind
from tether.handles import HANDLE_TYPES
from tether.params import clear_descriptor_cache
from tether.site import Site


@pytest.fixture(autouse=True)
def reset_state():
    """Clear memoized descriptors and any leftover render stack between tests."""
    clear_descriptor_cache()
    Site._local.__dict__.clear()
    yield
    clear_descriptor_cache()


@pytest.fixture
def connection():
    return MemoryConnection(
        collections={
            "threads": {
                "t1": {"status": "open", "title": "Roadmap", "votes": 3},
                "t2": {"status": "closed", "title": "Release notes", "votes": 5},
                "t3": {"status": "open", "title": "Bug triage", "votes": 1},
            },
            "users": {
                "u1": {"name": "Ann"},
            },
        }
    )


@pytest.fixture
def model(connection):
    return Model(connection)


@pytest.fixture
def batcher():
    return Batcher()


@pytest.fixture
def gate():
    return Gate()


@pytest.fixture
def controlled_types(gate):
    """Registry where every async kind is test-controlled."""
    return {
        kind: make_controlled_type(gate, kind)
        for kind in (
            ResourceKind.DOC,
            ResourceKind.QUERY,
            ResourceKind.QUERY_EXTRA,
            ResourceKind.API,
        )
    }


@pytest.fixture
def recorded_types(gate):
    """The default registry with every constructed handle recorded."""
    return {kind: make_recorded_type(gate, handle_type) for kind, handle_type in HANDLE_TYPES.items()}
