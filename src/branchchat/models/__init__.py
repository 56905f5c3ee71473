from branchchat.models.nodes import Attachment, ConversationMeta, Node, Speaker, TokenUsage
from branchchat.models.settings import (
    ApiErrorHandlingSettings,
    ApiKey,
    AppSettings,
    AssistSettings,
    CustomChoiceRoll,
    DiceRoll,
    GenerationSettings,
    MarkerSettings,
    PromptPreset,
    SettingsStore,
    TemplatePromptConfig,
    TokenUsageAlertSettings,
    UiSettings,
    load_settings,
    save_settings,
)

__all__ = [
    "ApiErrorHandlingSettings",
    "ApiKey",
    "AppSettings",
    "AssistSettings",
    "Attachment",
    "ConversationMeta",
    "CustomChoiceRoll",
    "DiceRoll",
    "GenerationSettings",
    "MarkerSettings",
    "Node",
    "PromptPreset",
    "SettingsStore",
    "Speaker",
    "TemplatePromptConfig",
    "TokenUsage",
    "TokenUsageAlertSettings",
    "UiSettings",
    "load_settings",
    "save_settings",
]
