"""Process assembly.

Builds the backend registry, backend factory, resolver and ChatService from
Settings. Backends are created once and shared read-only across requests; the
HTTP clients are shared by every backend for connection pooling.

Usage:
    settings = get_settings()
    configure_logging(json_format=settings.log_json)
    async with chat_gateway(settings) as chat:
        response = await chat.chat(request)
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from chatgate.config import Settings
from chatgate.logging import get_logger
from chatgate.services.chat.catalog import (
    ChannelCatalog,
    InMemoryChannelCatalog,
    InMemoryModelCatalog,
    ModelCatalog,
)
from chatgate.services.chat.facade import ChatService
from chatgate.services.chat.resolver import ProviderResolver
from chatgate.services.llm.adapter import ChatBackend
from chatgate.services.llm.anthropic_adapter import AnthropicChatBackend
from chatgate.services.llm.factory import BackendFactory
from chatgate.services.llm.gemini_adapter import GeminiChatBackend
from chatgate.services.llm.openai_adapter import (
    OneAPIChatBackend,
    OpenAIChatBackend,
    OpenRouterChatBackend,
)
from chatgate.services.llm.registry import BackendRegistry, Provider

logger = get_logger(__name__)


def create_http_client(proxy_url: str | None = None) -> httpx.AsyncClient:
    """Create a pooled client for backend calls, optionally routed through a proxy."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        proxy=proxy_url,
    )


def build_backends(settings: Settings, client: httpx.AsyncClient) -> dict[str, ChatBackend]:
    """Instantiate the preconfigured backend of every provider with credentials.

    OpenAI is always built: it is the default backend.
    """
    timeout_s = settings.llm_timeout_s
    backends: dict[str, ChatBackend] = {
        Provider.OPENAI.value: OpenAIChatBackend(
            client,
            api_key=settings.openai_api_key or "",
            server=settings.openai_server,
            azure=settings.openai_azure,
            azure_api_version=settings.openai_azure_api_version if settings.openai_azure else "",
            timeout_s=timeout_s,
        )
    }

    if settings.anthropic_api_key:
        backends[Provider.ANTHROPIC.value] = AnthropicChatBackend(
            client, api_key=settings.anthropic_api_key, timeout_s=timeout_s
        )
    if settings.gemini_api_key:
        backends[Provider.GOOGLE.value] = GeminiChatBackend(
            client,
            api_key=settings.gemini_api_key,
            name=Provider.GOOGLE.value,
            timeout_s=timeout_s,
        )
    if settings.oneapi_api_key and settings.oneapi_server:
        backends[Provider.ONEAPI.value] = OneAPIChatBackend(
            client,
            api_key=settings.oneapi_api_key,
            server=settings.oneapi_server,
            name=Provider.ONEAPI.value,
            timeout_s=timeout_s,
        )
    if settings.openrouter_api_key:
        backends[Provider.OPENROUTER.value] = OpenRouterChatBackend(
            client,
            api_key=settings.openrouter_api_key,
            server=settings.openrouter_server,
            referer=settings.openrouter_referer,
            title=settings.openrouter_title,
            name=Provider.OPENROUTER.value,
            timeout_s=timeout_s,
        )

    for vendor, api_key in settings.vendor_api_keys.items():
        backends[vendor] = OpenAIChatBackend(
            client,
            api_key=api_key,
            server=settings.vendor_server(vendor),
            name=vendor,
            timeout_s=timeout_s,
        )

    return backends


def build_registry(settings: Settings, client: httpx.AsyncClient) -> BackendRegistry:
    """Populate the registry, with DEFAULT_PROVIDER as the fallback backend.

    Raises:
        ValueError: If DEFAULT_PROVIDER has no configured backend.
    """
    backends = build_backends(settings, client)
    default = backends.pop(settings.default_provider, None)
    if default is None:
        raise ValueError(
            f"DEFAULT_PROVIDER {settings.default_provider!r} has no configured backend"
        )

    registry = BackendRegistry(default, default_name=settings.default_provider)
    registry.register_many(backends.items())
    logger.info(
        "registry.initialized",
        default_provider=registry.default_name,
        providers=registry.names(),
    )
    return registry


def build_chat_service(
    settings: Settings,
    client: httpx.AsyncClient,
    *,
    proxy_client: httpx.AsyncClient | None = None,
    models: ModelCatalog | None = None,
    channels: ChannelCatalog | None = None,
) -> ChatService:
    """Assemble a ChatService over the given clients and catalogs.

    The caller owns the clients. Catalogs default to empty in-memory ones,
    in which case every model resolves to the default provider.
    """
    registry = build_registry(settings, client)
    factory = BackendFactory(
        client,
        proxy_client=proxy_client,
        openrouter_referer=settings.openrouter_referer,
        openrouter_title=settings.openrouter_title,
        timeout_s=settings.llm_timeout_s,
    )
    resolver = ProviderResolver(
        models if models is not None else InMemoryModelCatalog(),
        channels if channels is not None else InMemoryChannelCatalog(),
        registry,
        factory,
        default_max_context=settings.default_max_context,
    )
    return ChatService(
        resolver,
        max_message_tokens=settings.max_message_tokens,
        max_message_words=settings.max_message_words,
    )


@asynccontextmanager
async def chat_gateway(
    settings: Settings,
    *,
    models: ModelCatalog | None = None,
    channels: ChannelCatalog | None = None,
) -> AsyncIterator[ChatService]:
    """Create shared HTTP clients, yield a ChatService, close the clients on exit."""
    client = create_http_client()
    proxy_client = create_http_client(settings.proxy_url) if settings.supports_proxy else None
    try:
        yield build_chat_service(
            settings,
            client,
            proxy_client=proxy_client,
            models=models,
            channels=channels,
        )
    finally:
        await client.aclose()
        if proxy_client is not None:
            await proxy_client.aclose()
        logger.info("gateway.http_client_closed")
