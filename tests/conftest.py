"""
Global pytest configuration and fixtures for test isolation.

Every test gets a fresh in-memory document store, settings with zero retry
delays and a container wired to both. Process-wide observability state is
reset around each test.
"""

import random

import pytest

from nexusai.config.container import setup_container
from nexusai.config.settings import Settings
from nexusai.observability.logging import bind_run, clear_trace_id
from nexusai.observability.metrics import reset_metrics
from nexusai.observability.tracing import reset_tracing
from nexusai.storage.documents import MemoryStore


def reset_all_global_state():
    """Reset process-wide observability state and reseed."""
    random.seed(1337)
    reset_metrics()
    reset_tracing()
    clear_trace_id()
    bind_run(None)


@pytest.fixture(autouse=True)
def isolate_test():
    reset_all_global_state()
    yield
    reset_all_global_state()


@pytest.fixture
def settings():
    """Settings for fast, hermetic runs."""
    return Settings(
        storage={"backend": "memory"},
        retry={"max_delay_ms": 0},
        pipeline={"retry_delay_scale": 0.0, "timezone": "UTC"},
        observability={"enable_tracing": False, "enable_metrics": False},
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def container(settings, store):
    c = setup_container(settings)
    c.register_singleton("document_store", store)
    return c


@pytest.fixture
def topic_queue(container):
    return container.require("topic_queue")


@pytest.fixture
def review_queue(container):
    return container.require("review_queue")


@pytest.fixture
def state_manager(container):
    return container.require("state_manager")
