"""Chat request pipeline.

initialize -> ChatService.fix_request -> fit_to_budget (optional) -> backend.
"""

from chatgate.services.chat.alternation import fix_roles
from chatgate.services.chat.catalog import (
    Channel,
    ChannelMeta,
    InMemoryChannelCatalog,
    InMemoryModelCatalog,
    ModelDescriptor,
    ModelMeta,
    ModelProvider,
)
from chatgate.services.chat.context import TokenBudgetReducer, fit_to_budget
from chatgate.services.chat.facade import ChatService
from chatgate.services.chat.normalize import initialize
from chatgate.services.chat.resolver import ProviderResolver

__all__ = [
    "Channel",
    "ChannelMeta",
    "ModelDescriptor",
    "ModelMeta",
    "ModelProvider",
    "InMemoryChannelCatalog",
    "InMemoryModelCatalog",
    "initialize",
    "fix_roles",
    "fit_to_budget",
    "TokenBudgetReducer",
    "ProviderResolver",
    "ChatService",
]
