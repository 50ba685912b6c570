"""
Shared fixtures for tagging tests.
"""
import pytest
import fakeredis

from src.services.associations import AssociationEngine
from src.services.query import QueryDispatcher
from src.services.registry import ResourceKind, ResourceRegistry
from src.services.service import TaggingService
from src.services.settings import ConsistencyMode


@pytest.fixture
def redis_client():
    """In-process Redis returning str values, isolated per test."""
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def registry():
    """Users and items identified by id, tags by name."""
    return ResourceRegistry.default()


@pytest.fixture
def engine(redis_client, registry):
    return AssociationEngine(redis_client, registry)


@pytest.fixture
def optimistic_engine(redis_client, registry):
    return AssociationEngine(redis_client, registry, ConsistencyMode.OPTIMISTIC)


@pytest.fixture
def dispatcher(redis_client, registry):
    return QueryDispatcher(redis_client, registry)


@pytest.fixture
def service(redis_client, registry):
    return TaggingService(redis_client, registry)


@pytest.fixture
def make(registry):
    """Shortcut for building resources: make("user", 1)."""
    def _make(kind, identifier):
        return registry.resource(ResourceKind.parse(kind), identifier)
    return _make


@pytest.fixture
def user(make):
    return make("user", 1)


@pytest.fixture
def item(make):
    return make("item", 5)


@pytest.fixture
def ruby(make):
    return make("tag", "ruby")
