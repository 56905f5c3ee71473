from branchchat.telemetry.logging_utils import (
    ConversationContextFilter,
    configure_logging,
    get_conversation_id,
    install_conversation_log_filter,
    set_conversation_id,
)

__all__ = [
    "ConversationContextFilter",
    "configure_logging",
    "get_conversation_id",
    "install_conversation_log_filter",
    "set_conversation_id",
]
