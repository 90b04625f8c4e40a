"""memo_chat package."""

__all__ = [
    "config",
    "db",
    "models",
    "schemas",
    "llm_client",
    "memo_context",
    "chat_sessions",
    "chat_service",
]
