"""Pydantic schemas for request/response wire formats.

All schemas are re-exported here for convenient imports.
"""

from chatgate.schemas.chat import (
    ROOM_ID_SHIM_VERSION,
    ChatRequestIn,
    ChatResponseOut,
    ContentPartIn,
    FileURLIn,
    ImageURLIn,
    MessageIn,
)

__all__ = [
    "ROOM_ID_SHIM_VERSION",
    "ChatRequestIn",
    "ChatResponseOut",
    "ContentPartIn",
    "FileURLIn",
    "ImageURLIn",
    "MessageIn",
]
