"""Service layer.

- chatgate.services.chat: request normalization, context fitting, provider resolution
- chatgate.services.llm: vendor backends, error normalization, token counting
- chatgate.services.bootstrap: process assembly of the above from settings
"""
