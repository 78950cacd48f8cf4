"""chatgate: multi-provider LLM chat gateway core."""
