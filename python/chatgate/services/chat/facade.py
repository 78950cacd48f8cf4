"""Chat facade.

ChatService is the single entry point callers use. It implements the same
ChatBackend capability the vendor backends expose, so a caller cannot tell a
facade from a backend:

- fix_request: initialize, purify, content rewrite, model lookup, provider
  selection, model rewrite, mandatory system prompt, alternation fix
- fit_context: initialize, then trim history to the model's context window
  using the configured message ceilings
- chat / chat_stream: fix_request, then dispatch to the resolved backend
- max_context_length / channels: answered by the resolver

Requests may arrive raw or already initialized (see
chatgate.schemas.chat.ChatRequestIn.to_request); initialize runs at most once.
Backend errors pass through unmodified.
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import replace

from chatgate.logging import get_logger
from chatgate.services.chat.alternation import fix_roles
from chatgate.services.chat.catalog import ModelProvider
from chatgate.services.chat.context import (
    MAX_MESSAGE_TOKENS,
    MAX_MESSAGE_WORDS,
    ContextReducer,
    fit_to_budget,
)
from chatgate.services.chat.messages import purify, redact_for_log
from chatgate.services.chat.normalize import (
    drop_blank_messages,
    initialize,
    merge_system_prompt,
    rewrite_content,
    strip_namespace,
)
from chatgate.services.chat.quirks import DEFAULT_CONTENT_REWRITES
from chatgate.services.chat.resolver import ProviderResolver
from chatgate.services.llm.adapter import ChatBackend
from chatgate.services.llm.tokenizer import EstimatingTokenizer, Tokenizer
from chatgate.services.llm.types import ChatRequest, ChatResponse
from chatgate.services.redact import safe_kv

logger = get_logger(__name__)


class ChatService(ChatBackend):
    """Normalizes requests and routes them to the backend serving the model."""

    def __init__(
        self,
        resolver: ProviderResolver,
        *,
        rewrites: Mapping[str, str] = DEFAULT_CONTENT_REWRITES,
        tokenizer: Tokenizer | None = None,
        max_message_tokens: int = MAX_MESSAGE_TOKENS,
        max_message_words: int = MAX_MESSAGE_WORDS,
    ):
        self.resolver = resolver
        self._rewrites = rewrites
        self.tokenizer = tokenizer or EstimatingTokenizer()
        self.max_message_tokens = max_message_tokens
        self.max_message_words = max_message_words

    def fix_request(self, req: ChatRequest) -> tuple[ChatRequest, ModelProvider]:
        """Prepare a request for dispatch and pick its provider.

        Returns:
            The dispatchable request and the provider selected to serve it.
        """
        req = initialize(req)
        # purify can empty a turn that only carried a file
        messages = drop_blank_messages(purify(req.messages))
        messages = rewrite_content(messages, self._rewrites)

        descriptor, provider = self.resolver.select_provider(req.model)
        model = provider.model_rewrite or req.model

        messages = fix_roles(merge_system_prompt(messages, descriptor.meta.prompt))
        return replace(req, model=model, messages=messages), provider

    def fit_context(
        self,
        req: ChatRequest,
        max_context_messages: int,
        max_token_count: int,
        *,
        reducer: ContextReducer | None = None,
    ) -> tuple[ChatRequest, int]:
        """Trim a request's history to fit the model's context window.

        Returns:
            The fitted request and its input token count.

        Raises:
            ContextExceedLimitError: If no valid conversation fits.
            MessageTooLargeError: If the trailing message exceeds a size ceiling.
        """
        return fit_to_budget(
            initialize(req),
            self,
            max_context_messages,
            max_token_count,
            tokenizer=self.tokenizer,
            reducer=reducer,
            max_message_tokens=self.max_message_tokens,
            max_message_words=self.max_message_words,
        )

    async def chat(self, req: ChatRequest) -> ChatResponse:
        req, provider = self.fix_request(req)
        backend = self.resolver.select_backend(provider)
        self._log_dispatch(req, provider, streaming=False)
        return await backend.chat(req)

    async def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        req, provider = self.fix_request(req)
        backend = self.resolver.select_backend(provider)
        self._log_dispatch(req, provider, streaming=True)

        async with aclosing(backend.chat_stream(req)) as stream:
            async for chunk in stream:
                yield chunk

    def max_context_length(self, model: str) -> int:
        return self.resolver.max_context_length(self._catalog_model_id(model))

    def channels(self, model: str) -> tuple[ModelProvider, ...]:
        return self.resolver.channels(self._catalog_model_id(model))

    def _catalog_model_id(self, model: str) -> str:
        """Resolve a possibly namespaced id to the id the catalog knows.

        Ids are tried as given first, since normalized ids may contain colons.
        """
        if self.resolver.has_model(model):
            return model
        stripped = strip_namespace(model)
        if stripped != model and self.resolver.has_model(stripped):
            return stripped
        return model

    def _log_dispatch(self, req: ChatRequest, provider: ModelProvider, *, streaming: bool) -> None:
        logger.info(
            "chat.request.started",
            **safe_kv(
                provider=provider.name,
                channel_id=provider.channel_id,
                model_name=req.model,
                streaming=streaming,
                turns=len(req.messages),
            ),
        )
        logger.debug(
            "chat.request.messages",
            **safe_kv(messages_redacted=redact_for_log(req.messages)),
        )
