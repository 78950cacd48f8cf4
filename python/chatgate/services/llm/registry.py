"""Process-wide backend registry.

Maps a provider name to the backend instance serving it. The registry is populated
once at startup (see chatgate.services.bootstrap) and only read afterwards, so
adding a vendor means registering one more instance; the resolver never changes.
"""

from collections.abc import Iterable
from enum import Enum

from chatgate.logging import get_logger
from chatgate.services.llm.adapter import ChatBackend

logger = get_logger(__name__)


class Provider(str, Enum):
    """Known provider names, as stored on models and channels."""

    OPENAI = "openai"
    XUNFEI = "xunfei"
    WENXIN = "wenxin"
    DASHSCOPE = "dashscope"
    SENSENOVA = "sensenova"
    TENCENT = "tencent"
    BAICHUAN = "baichuan"
    GPT360 = "360"
    ONEAPI = "oneapi"
    OPENROUTER = "openrouter"
    SKY = "sky"
    ZHIPU = "zhipu"
    MOONSHOT = "moonshot"
    GOOGLE = "google"
    ANTHROPIC = "anthropic"


class BackendRegistry:
    """Provider name → backend instance, with a designated default."""

    def __init__(self, default: ChatBackend, default_name: str = Provider.OPENAI.value):
        self._default_name = default_name
        self._backends: dict[str, ChatBackend] = {default_name: default}

    def register(self, name: str, backend: ChatBackend) -> None:
        if name in self._backends:
            logger.info("registry.backend_replaced", provider=name)
        self._backends[name] = backend

    def register_many(self, backends: Iterable[tuple[str, ChatBackend]]) -> None:
        items = list(backends)
        for name, backend in items:
            self.register(name, backend)
        logger.info("registry.backends_registered", count=len(items))

    def get(self, name: str | None) -> ChatBackend | None:
        """Return the backend registered for a provider name, or None."""
        if not name:
            return None
        return self._backends.get(name)

    @property
    def default(self) -> ChatBackend:
        return self._backends[self._default_name]

    @property
    def default_name(self) -> str:
        return self._default_name

    def names(self) -> list[str]:
        return sorted(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends
