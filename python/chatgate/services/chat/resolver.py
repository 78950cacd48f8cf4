"""Provider resolution and fallback.

Maps a model to the backend that serves it. Evaluated fresh on every call:

1. Channel override: when the selected provider names a channel, load it.
   Dynamically configurable channel types (openai / oneapi / openrouter) get a
   client built from the channel's server, secret and flags. Any other channel
   type is looked up by name in the registry.
2. Provider name: the preconfigured backend registered for the provider.
3. Default: the registry's default backend, with a warning.

Resolution never raises. Configuration problems are logged and degraded to a
fallback backend; a degraded answer beats a failed chat.
"""

from typing import TYPE_CHECKING

from chatgate.logging import get_logger
from chatgate.services.chat.catalog import (
    ChannelCatalog,
    ModelCatalog,
    ModelDescriptor,
    ModelMeta,
    ModelProvider,
)
from chatgate.services.llm.adapter import ChatBackend
from chatgate.services.llm.registry import BackendRegistry
from chatgate.services.redact import safe_kv

if TYPE_CHECKING:
    from chatgate.services.llm.factory import BackendFactory

logger = get_logger(__name__)

# Used when neither the model metadata nor the backend know the context length
DEFAULT_MAX_CONTEXT = 4000


class ProviderResolver:
    """Selects backends for models from catalogs, channels and the registry."""

    def __init__(
        self,
        models: ModelCatalog,
        channels: ChannelCatalog,
        registry: BackendRegistry,
        factory: "BackendFactory",
        *,
        default_max_context: int = DEFAULT_MAX_CONTEXT,
    ):
        self._models = models
        self._channels = channels
        self._registry = registry
        self._factory = factory
        self._default_max_context = default_max_context

    @property
    def default_provider(self) -> str:
        return self._registry.default_name

    def query_model(self, model_id: str) -> ModelDescriptor:
        """Look up a model; unknown models get a restricted fallback descriptor."""
        try:
            descriptor = self._models.lookup_model(model_id)
        except Exception as e:
            logger.warning("provider.model_lookup_failed", model=model_id, error=str(e))
            descriptor = None

        if descriptor is not None:
            return descriptor

        return ModelDescriptor(
            model_id=model_id,
            providers=(ModelProvider(name=self.default_provider),),
            meta=ModelMeta(restricted=True, max_context=self._default_max_context),
        )

    def has_model(self, model_id: str) -> bool:
        """Whether the catalog describes model_id. Lookup errors count as unknown."""
        try:
            return self._models.lookup_model(model_id) is not None
        except Exception:
            return False

    def select_provider(self, model_id: str) -> tuple[ModelDescriptor, ModelProvider]:
        descriptor = self.query_model(model_id)
        return descriptor, descriptor.select_provider(self.default_provider)

    def select_backend(self, provider: ModelProvider) -> ChatBackend:
        """Pick the backend for a provider, falling back as described above."""
        if provider.channel_id:
            backend = self._backend_for_channel(provider)
            if backend is not None:
                return backend

        backend = self._registry.get(provider.name)
        if backend is not None:
            return backend

        logger.warning(
            "provider.unsupported_using_default",
            provider=provider.name,
            default_provider=self.default_provider,
        )
        return self._registry.default

    def max_context_length(self, model: str) -> int:
        """Context length: model override, then backend-reported, then the floor."""
        descriptor, provider = self.select_provider(model)
        if descriptor.meta.max_context > 0:
            return descriptor.meta.max_context

        reported = self.select_backend(provider).max_context_length(model)
        if reported > 0:
            return reported

        return self._default_max_context

    def channels(self, model: str) -> tuple[ModelProvider, ...]:
        """All providers eligible to serve a model."""
        return self.query_model(model).providers

    def _backend_for_channel(self, provider: ModelProvider) -> ChatBackend | None:
        try:
            channel = self._channels.lookup_channel(provider.channel_id)
        except Exception as e:
            logger.error(
                "provider.channel_lookup_failed",
                **safe_kv(provider=provider.name, channel_id=provider.channel_id, error=str(e)),
            )
            return None

        if self._factory.supports(channel.type):
            return self._factory.create(channel)

        backend = self._registry.get(channel.type)
        if backend is None:
            logger.warning(
                "provider.channel_type_unsupported",
                channel_id=channel.id,
                channel_type=channel.type,
            )
        return backend
