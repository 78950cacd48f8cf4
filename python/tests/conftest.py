"""Pytest configuration and fixtures for chatgate tests.

Test isolation strategy:
- No network: backends are fakes or respx-mocked httpx clients
- No process-wide state: registries and catalogs are built per test
- Settings are constructed explicitly; the cached instance is cleared around each test
"""

import httpx
import pytest
import structlog

from chatgate.config import clear_settings_cache
from chatgate.logging import clear_request_context
from chatgate.services.chat.catalog import InMemoryChannelCatalog, InMemoryModelCatalog
from chatgate.services.chat.facade import ChatService
from chatgate.services.chat.resolver import ProviderResolver
from chatgate.services.llm.factory import BackendFactory
from chatgate.services.llm.registry import BackendRegistry
from chatgate.services.llm.tokenizer import EstimatingTokenizer
from tests.helpers import FakeBackend


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch):
    """Run every test in the test environment with fresh settings and log context."""
    monkeypatch.setenv("CHATGATE_ENV", "test")
    clear_settings_cache()
    clear_request_context()
    yield
    clear_settings_cache()
    clear_request_context()


@pytest.fixture
def httpx_client():
    """Create an httpx AsyncClient for testing."""
    return httpx.AsyncClient()


@pytest.fixture
def tokenizer() -> EstimatingTokenizer:
    return EstimatingTokenizer()


@pytest.fixture
def default_backend() -> FakeBackend:
    return FakeBackend("openai")


@pytest.fixture
def registry(default_backend) -> BackendRegistry:
    return BackendRegistry(default_backend, default_name="openai")


@pytest.fixture
def model_catalog() -> InMemoryModelCatalog:
    return InMemoryModelCatalog()


@pytest.fixture
def channel_catalog() -> InMemoryChannelCatalog:
    return InMemoryChannelCatalog()


@pytest.fixture
def factory(httpx_client) -> BackendFactory:
    return BackendFactory(httpx_client)


@pytest.fixture
def resolver(model_catalog, channel_catalog, registry, factory) -> ProviderResolver:
    return ProviderResolver(model_catalog, channel_catalog, registry, factory)


@pytest.fixture
def chat_service(resolver) -> ChatService:
    return ChatService(resolver)


@pytest.fixture
def log_sink():
    """Configure structlog to capture events into a list.

    Returns a list that will contain all emitted log event dicts.
    After the test, structlog is reset to normal.
    """
    events: list[dict] = []
    original_config = structlog.get_config()

    def capture_processor(logger, method_name, event_dict):
        event_dict["log_level"] = method_name
        events.append(event_dict.copy())
        raise structlog.DropEvent

    structlog.configure(
        processors=[capture_processor],
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    yield events

    structlog.configure(**original_config)
