"""Pydantic models for application settings."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = ".data"
DEFAULT_SETTINGS_FILE = "settings.json"
DEFAULT_MODEL = "gemini-2.5-pro"


class SettingsModel(BaseModel):
    """Base settings model with camelCase aliases enabled."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class ApiKey(SettingsModel):
    """A named credential for the generation backend."""

    id: str
    name: str
    key: str


class PromptPreset(SettingsModel):
    id: str
    title: str = ""
    text: str = ""


class TemplatePromptConfig(SettingsModel):
    """A set of prompt presets with one active selection."""

    is_enabled: bool = False
    active_preset_id: str = ""
    presets: list[PromptPreset] = Field(default_factory=list)

    def active_text(self) -> str | None:
        """Return the active preset text when the template is enabled."""
        if not self.is_enabled:
            return None
        for preset in self.presets:
            if preset.id == self.active_preset_id:
                return preset.text or None
        return None


class DiceRoll(SettingsModel):
    """Dice instruction: roll ``dice_count`` dice with ``dice_type`` faces."""

    id: str
    is_enabled: bool = False
    instruction_text: str = ""
    dice_count: int = Field(default=1, ge=0)
    dice_type: int = Field(default=100, ge=1)


class CustomChoiceRoll(SettingsModel):
    """Choice instruction: pick one of ``options`` at random."""

    id: str
    is_enabled: bool = False
    instruction_text: str = ""
    options: list[str] = Field(default_factory=list)


class MarkerSettings(SettingsModel):
    """Markers wrapping a hidden instruction block."""

    is_enabled: bool = True
    start: str = "["
    end: str = "]"
    use_multipart: bool = False


class UiSettings(SettingsModel):
    show_token_count: bool = True


class ApiErrorHandlingSettings(SettingsModel):
    """Retry and credential rotation policy."""

    loop_api_keys: bool = True
    exponential_backoff: bool = True
    max_retries: int = Field(default=3, ge=0)
    initial_wait_seconds: float = Field(default=1.0, ge=0)


class AssistSettings(SettingsModel):
    save_minimal_metadata: bool = True
    use_combined_history_format: bool = False


class GenerationSettings(SettingsModel):
    """Generation options forwarded to the backend; None means backend default."""

    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    thinking_budget: int | None = None
    include_thoughts: bool = False


class TokenUsageAlertSettings(SettingsModel):
    is_enabled: bool = False
    threshold_usd: float = 1.0


class BackupSettings(SettingsModel):
    is_enabled: bool = False
    last_backup_at: str | None = None


def _default_dice_rolls() -> list[DiceRoll]:
    return [
        DiceRoll(
            id="default-dice-roll",
            instruction_text="1d100",
            dice_count=1,
            dice_type=100,
        )
    ]


def _default_choice_rolls() -> list[CustomChoiceRoll]:
    return [
        CustomChoiceRoll(
            id="default-custom-choice",
            instruction_text="Outcome",
            options=["Critical success", "Success", "Failure", "Critical failure"],
        )
    ]


class AppSettings(SettingsModel):
    """Complete client configuration."""

    api_keys: list[ApiKey] = Field(default_factory=list)
    active_api_key_id: str | None = None
    model: str = DEFAULT_MODEL
    system_prompt: TemplatePromptConfig = Field(default_factory=TemplatePromptConfig)
    dummy_user_prompt: TemplatePromptConfig = Field(default_factory=TemplatePromptConfig)
    dummy_model_prompt: TemplatePromptConfig = Field(default_factory=TemplatePromptConfig)
    ui: UiSettings = Field(default_factory=UiSettings)
    api_error_handling: ApiErrorHandlingSettings = Field(default_factory=ApiErrorHandlingSettings)
    assist: AssistSettings = Field(default_factory=AssistSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    token_usage_alert: TokenUsageAlertSettings = Field(default_factory=TokenUsageAlertSettings)
    dice_rolls: list[DiceRoll] = Field(default_factory=_default_dice_rolls)
    dice_roll_markers: MarkerSettings = Field(
        default_factory=lambda: MarkerSettings(
            start="[Dice]", end="[/Dice]User text:", use_multipart=True
        )
    )
    custom_choice_rolls: list[CustomChoiceRoll] = Field(default_factory=_default_choice_rolls)
    custom_choice_markers: MarkerSettings = Field(
        default_factory=lambda: MarkerSettings(
            start="[Choice]", end="[/Choice]User text:", use_multipart=True
        )
    )

    def active_api_key(self) -> ApiKey | None:
        """Return the selected credential, if one is configured."""
        for api_key in self.api_keys:
            if api_key.id == self.active_api_key_id:
                return api_key
        return None

    def has_enabled_generators(self) -> bool:
        """Return True when any dice or choice instruction is enabled."""
        return any(d.is_enabled for d in self.dice_rolls) or any(
            c.is_enabled for c in self.custom_choice_rolls
        )

    def next_api_key(self) -> ApiKey | None:
        """Return the credential after the active one, wrapping to the first."""
        if not self.api_keys:
            return None
        ids = [key.id for key in self.api_keys]
        try:
            index = ids.index(self.active_api_key_id)
        except ValueError:
            index = -1
        return self.api_keys[(index + 1) % len(self.api_keys)]


def data_dir() -> Path:
    """Return the base directory for local state."""
    return Path(os.getenv("BRANCHCHAT_DATA_DIR", DEFAULT_DATA_DIR))


def settings_path() -> Path:
    """Return the settings file location."""
    configured = os.getenv("BRANCHCHAT_SETTINGS_PATH")
    if configured:
        return Path(configured)
    return data_dir() / DEFAULT_SETTINGS_FILE


def _parse_list(value: str) -> list[str]:
    """Parse comma-separated string into list."""
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(path: str | Path | None = None) -> AppSettings:
    """Load settings from the JSON file and environment variables."""
    load_dotenv()

    file_path = Path(path) if path is not None else settings_path()
    data: dict[str, Any] = {}
    if file_path.exists():
        data = json.loads(file_path.read_text(encoding="utf-8"))
    settings = AppSettings.model_validate(data)

    overrides: dict[str, Any] = {}
    env_keys = _parse_list(os.getenv("BRANCHCHAT_API_KEYS", ""))
    if env_keys:
        keys = [
            ApiKey(id=f"env-{index}", name=f"env key {index + 1}", key=value)
            for index, value in enumerate(env_keys)
        ]
        overrides["api_keys"] = keys
        if settings.active_api_key_id not in {key.id for key in keys}:
            overrides["active_api_key_id"] = keys[0].id
    elif settings.api_keys and settings.active_api_key() is None:
        overrides["active_api_key_id"] = settings.api_keys[0].id
    model = os.getenv("BRANCHCHAT_MODEL")
    if model:
        overrides["model"] = model
    return settings.model_copy(update=overrides) if overrides else settings


def save_settings(settings: AppSettings, path: str | Path) -> None:
    """Write settings to disk as camelCase JSON."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(settings.model_dump_json(by_alias=True, indent=2), encoding="utf-8")


class SettingsStore:
    """Hold the current settings and persist changes with a debounce."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        path: str | Path | None = None,
        debounce_seconds: float = 1.0,
    ) -> None:
        self._value = settings or AppSettings()
        self._path = Path(path) if path is not None else None
        self._debounce_seconds = debounce_seconds
        self._save_task: asyncio.Task[None] | None = None

    @property
    def value(self) -> AppSettings:
        """Return the current settings snapshot."""
        return self._value

    def replace(self, settings: AppSettings) -> None:
        """Swap in a complete settings value."""
        self._value = settings
        self.schedule_save()

    def update(self, **changes: Any) -> AppSettings:
        """Apply top-level field changes and schedule a save."""
        self._value = self._value.model_copy(update=changes)
        self.schedule_save()
        return self._value

    def rotate_api_key(self) -> ApiKey | None:
        """Advance the active credential to the next one in cyclic order."""
        next_key = self._value.next_api_key()
        if next_key is None:
            return None
        self.update(active_api_key_id=next_key.id)
        logger.info("Rotated API key to %s", next_key.name)
        return next_key

    def schedule_save(self) -> None:
        """Persist after a quiet period, coalescing rapid changes."""
        if self._path is None:
            return
        if self._save_task is not None:
            self._save_task.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.save_now()
            return
        self._save_task = loop.create_task(self._delayed_save())

    async def _delayed_save(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self._save_task = None
        self.save_now()

    def save_now(self) -> None:
        """Write settings immediately; failures are logged, not raised."""
        if self._path is None:
            return
        try:
            save_settings(self._value, self._path)
        except OSError:
            logger.exception("Failed to save settings to %s", self._path)

    async def flush(self) -> None:
        """Cancel any pending debounce and save now."""
        task = self._save_task
        self._save_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self.save_now()
