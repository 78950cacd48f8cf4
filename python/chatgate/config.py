"""Application settings loaded from environment variables.

Environment Configuration:
    CHATGATE_ENV: Deployment environment (local | test | staging | prod)
    DEFAULT_PROVIDER: Provider used when a model is unknown or unsupported (default: openai)
    LOG_JSON: Emit JSON logs (default: true)

Context Limits:
    DEFAULT_MAX_CONTEXT: Context length used when neither model nor backend report one
    MAX_MESSAGE_TOKENS: Token ceiling for the trailing user message
    MAX_MESSAGE_WORDS: Word ceiling for the trailing user message

Backend Configuration:
    OPENAI_API_KEY / OPENAI_SERVER / OPENAI_AZURE / OPENAI_AZURE_API_VERSION
    ANTHROPIC_API_KEY
    GEMINI_API_KEY
    ONEAPI_API_KEY / ONEAPI_SERVER
    OPENROUTER_API_KEY / OPENROUTER_SERVER / OPENROUTER_REFERER / OPENROUTER_TITLE
    VENDOR_API_KEYS: JSON object of provider name -> key for other OpenAI-compatible vendors
    VENDOR_SERVERS: JSON object of provider name -> base URL (overrides built-in endpoints)
    PROXY_URL: Outbound proxy for channels flagged with using_proxy
    LLM_TIMEOUT_S: Backend request timeout in seconds
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Base URLs for OpenAI-compatible vendors that can be enabled with just a key.
BUILTIN_VENDOR_SERVERS: dict[str, str] = {
    "moonshot": "https://api.moonshot.cn/v1",
    "zhipu": "https://open.bigmodel.cn/api/paas/v4",
    "dashscope": "https://dashscope.aliyuncs.com/compatible-mode/v1",
    "baichuan": "https://api.baichuan-ai.com/v1",
    "xunfei": "https://spark-api-open.xf-yun.com/v1",
    "wenxin": "https://qianfan.baidubce.com/v2",
    "tencent": "https://api.hunyuan.cloud.tencent.com/v1",
}


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Gateway configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - All context limits must be positive
    - Every key in VENDOR_API_KEYS needs a server, either built in or from VENDOR_SERVERS
    """

    chatgate_env: Environment = Field(default=Environment.LOCAL, alias="CHATGATE_ENV")
    default_provider: str = Field(default="openai", alias="DEFAULT_PROVIDER")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Context limits
    default_max_context: int = Field(default=4000, alias="DEFAULT_MAX_CONTEXT")
    max_message_tokens: int = Field(default=4000, alias="MAX_MESSAGE_TOKENS")
    max_message_words: int = Field(default=20000, alias="MAX_MESSAGE_WORDS")

    # Outbound HTTP
    llm_timeout_s: int = Field(default=45, alias="LLM_TIMEOUT_S")
    proxy_url: str | None = Field(default=None, alias="PROXY_URL")

    # OpenAI (also the default backend)
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_server: str = Field(default="https://api.openai.com/v1", alias="OPENAI_SERVER")
    openai_azure: bool = Field(default=False, alias="OPENAI_AZURE")
    openai_azure_api_version: str = Field(
        default="2024-02-01", alias="OPENAI_AZURE_API_VERSION"
    )

    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")

    # Aggregators
    oneapi_api_key: str | None = Field(default=None, alias="ONEAPI_API_KEY")
    oneapi_server: str | None = Field(default=None, alias="ONEAPI_SERVER")
    openrouter_api_key: str | None = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_server: str = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_SERVER"
    )
    openrouter_referer: str = Field(default="https://chatgate.local", alias="OPENROUTER_REFERER")
    openrouter_title: str = Field(default="chatgate", alias="OPENROUTER_TITLE")

    # Other OpenAI-compatible vendors, keyed by provider name
    vendor_api_keys: dict[str, str] = Field(default_factory=dict, alias="VENDOR_API_KEYS")
    vendor_servers: dict[str, str] = Field(default_factory=dict, alias="VENDOR_SERVERS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_limits_and_vendors(self) -> "Settings":
        """Reject non-positive limits and vendor keys without a known server."""
        for name in ("DEFAULT_MAX_CONTEXT", "MAX_MESSAGE_TOKENS", "MAX_MESSAGE_WORDS", "LLM_TIMEOUT_S"):
            value = getattr(self, name.lower())
            if value < 1:
                raise ValueError(f"{name} must be >= 1 (got {value})")

        missing = sorted(
            vendor
            for vendor in self.vendor_api_keys
            if vendor not in self.vendor_servers and vendor not in BUILTIN_VENDOR_SERVERS
        )
        if missing:
            raise ValueError(
                f"VENDOR_SERVERS has no base URL for vendors: {', '.join(missing)}"
            )

        return self

    def vendor_server(self, vendor: str) -> str | None:
        """Return the base URL for an OpenAI-compatible vendor, if one is known."""
        return self.vendor_servers.get(vendor) or BUILTIN_VENDOR_SERVERS.get(vendor)

    @property
    def supports_proxy(self) -> bool:
        """Whether channels flagged with using_proxy can be honoured."""
        return bool(self.proxy_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
