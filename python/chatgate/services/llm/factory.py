"""Build backends from channel configuration.

Not every channel type can be configured dynamically. Only the OpenAI-compatible
families can be built from a channel row (server + secret + flags):

- openai: OpenAI or Azure OpenAI (azure flag + API version)
- oneapi: OneAPI aggregator
- openrouter: OpenRouter aggregator (default server + attribution headers)

Any other channel type returns None and the resolver falls back to the
preconfigured backend registered under that type's name.
"""

import httpx

from chatgate.logging import get_logger
from chatgate.services.chat.catalog import Channel
from chatgate.services.llm.adapter import DEFAULT_TIMEOUT_S, ChatBackend
from chatgate.services.llm.openai_adapter import (
    OPENAI_SERVER,
    OneAPIChatBackend,
    OpenAIChatBackend,
    OpenRouterChatBackend,
)
from chatgate.services.llm.registry import Provider

logger = get_logger(__name__)

DYNAMIC_CHANNEL_TYPES = frozenset(
    {Provider.OPENAI.value, Provider.ONEAPI.value, Provider.OPENROUTER.value}
)


class BackendFactory:
    """Creates backends for channels of the dynamically configurable types.

    Attributes:
        client: Shared HTTP client for direct connections
        proxy_client: Shared HTTP client routed through the outbound proxy (optional)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        proxy_client: httpx.AsyncClient | None = None,
        openrouter_referer: str = "",
        openrouter_title: str = "",
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        self.client = client
        self.proxy_client = proxy_client
        self._openrouter_referer = openrouter_referer
        self._openrouter_title = openrouter_title
        self._timeout_s = timeout_s

    def supports(self, channel_type: str) -> bool:
        return channel_type in DYNAMIC_CHANNEL_TYPES

    def create(self, channel: Channel) -> ChatBackend | None:
        """Build a backend for the channel, or None if its type is not dynamic."""
        if channel.type == Provider.OPENAI.value:
            return self.create_openai_client(channel)
        if channel.type == Provider.ONEAPI.value:
            return self.create_oneapi_client(channel)
        if channel.type == Provider.OPENROUTER.value:
            return self.create_openrouter_client(channel)
        return None

    def create_openai_client(self, channel: Channel) -> ChatBackend:
        meta = channel.meta
        return OpenAIChatBackend(
            self._client_for(channel),
            api_key=channel.secret,
            server=channel.server or OPENAI_SERVER,
            name=f"{Provider.OPENAI.value}#{channel.id}",
            azure=meta.azure,
            azure_api_version=meta.azure_api_version if meta.azure else "",
            headers=meta.headers,
            timeout_s=self._timeout_s,
        )

    def create_oneapi_client(self, channel: Channel) -> ChatBackend:
        return OneAPIChatBackend(
            self._client_for(channel),
            api_key=channel.secret,
            server=channel.server,
            name=f"{Provider.ONEAPI.value}#{channel.id}",
            headers=channel.meta.headers,
            timeout_s=self._timeout_s,
        )

    def create_openrouter_client(self, channel: Channel) -> ChatBackend:
        return OpenRouterChatBackend(
            self._client_for(channel),
            api_key=channel.secret,
            server=channel.server,
            referer=self._openrouter_referer,
            title=self._openrouter_title,
            name=f"{Provider.OPENROUTER.value}#{channel.id}",
            headers=channel.meta.headers,
            timeout_s=self._timeout_s,
        )

    def _client_for(self, channel: Channel) -> httpx.AsyncClient:
        if not channel.meta.using_proxy:
            return self.client
        if self.proxy_client is None:
            logger.warning("provider.channel_proxy_unavailable", channel_id=channel.id)
            return self.client
        return self.proxy_client
