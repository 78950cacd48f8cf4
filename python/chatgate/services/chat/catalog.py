"""Model and channel configuration entities and their lookup interfaces.

Persistence of models and channels lives outside this package. The resolver only
needs two lookups:

- ModelCatalog.lookup_model(model_id) -> ModelDescriptor | None
- ChannelCatalog.lookup_channel(channel_id) -> Channel (raises ChannelNotFoundError)

In-memory implementations are provided for process-local configuration and tests.
Lookups may race with configuration changes; callers use whatever snapshot
they receive.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from chatgate.services.llm.errors import ChannelNotFoundError


@dataclass(frozen=True)
class ModelProvider:
    """A provider eligible to serve a model.

    Attributes:
        name: Provider name (see chatgate.services.llm.registry.Provider)
        channel_id: Configured channel to use instead of the preconfigured backend
        model_rewrite: Model id to send to this provider instead of the requested one
    """

    name: str
    channel_id: int | None = None
    model_rewrite: str | None = None


@dataclass(frozen=True)
class ChannelMeta:
    """Per-channel flags."""

    using_proxy: bool = False
    azure: bool = False
    azure_api_version: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Channel:
    """A configured backend instance: type, server address, credential, flags."""

    id: int
    type: str
    server: str = ""
    secret: str = ""
    meta: ChannelMeta = field(default_factory=ChannelMeta)


@dataclass(frozen=True)
class ModelMeta:
    """Model metadata.

    Attributes:
        max_context: Context length override (0 = ask the backend)
        prompt: Mandatory system prompt prepended to every conversation
        restricted: Whether the model is restricted to privileged users
    """

    max_context: int = 0
    prompt: str = ""
    restricted: bool = False


@dataclass(frozen=True)
class ModelDescriptor:
    """A model id with its metadata and providers in preference order."""

    model_id: str
    providers: tuple[ModelProvider, ...] = ()
    meta: ModelMeta = field(default_factory=ModelMeta)

    def select_provider(self, default_provider: str = "openai") -> ModelProvider:
        """Pick the provider to serve this call: the most preferred one."""
        if self.providers:
            return self.providers[0]
        return ModelProvider(name=default_provider)


class ModelCatalog(Protocol):
    def lookup_model(self, model_id: str) -> ModelDescriptor | None: ...


class ChannelCatalog(Protocol):
    def lookup_channel(self, channel_id: int) -> Channel: ...


class InMemoryModelCatalog:
    """ModelCatalog backed by a dict."""

    def __init__(self, models: Iterable[ModelDescriptor] = ()):
        self._models: dict[str, ModelDescriptor] = {m.model_id: m for m in models}

    def add(self, model: ModelDescriptor) -> None:
        self._models[model.model_id] = model

    def lookup_model(self, model_id: str) -> ModelDescriptor | None:
        return self._models.get(model_id)


class InMemoryChannelCatalog:
    """ChannelCatalog backed by a dict."""

    def __init__(self, channels: Iterable[Channel] = ()):
        self._channels: dict[int, Channel] = {c.id: c for c in channels}

    def add(self, channel: Channel) -> None:
        self._channels[channel.id] = channel

    def lookup_channel(self, channel_id: int) -> Channel:
        try:
            return self._channels[channel_id]
        except KeyError:
            raise ChannelNotFoundError(channel_id) from None
