"""Conversation session: the single writer of the node tree.

The session owns the in-memory node map for one conversation, persists every
mutation through the repository, and drives the send/regenerate protocol
(retry with backoff, credential rotation, cancellation) on top of the
generation orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from branchchat.composer.composer import MessageComposer
from branchchat.composer.hidden import extract_visible, merge_hidden
from branchchat.generation.classifier import (
    ErrorCategory,
    analyze_error,
    error_message,
    error_status,
    finish_reason_annotation,
)
from branchchat.generation.orchestrator import ConfigurationError, resolve_api_key
from branchchat.models.nodes import Node, TokenUsage
from branchchat.session.cancellation import CancellationToken, GenerationCancelled
from branchchat.session.listener import SessionListener
from branchchat.telemetry.logging_utils import set_conversation_id
from branchchat.tree.navigator import (
    active_path,
    adjacent_sibling,
    reattachment_after_deletion,
    sibling_info,
)
from branchchat.utils import drop_none, new_id, utc_timestamp

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from branchchat.backup.manager import BackupManager
    from branchchat.generation.classifier import ErrorAnalysis
    from branchchat.generation.orchestrator import GenerationOrchestrator, GenerationResult
    from branchchat.models.nodes import Attachment, ConversationMeta
    from branchchat.models.settings import SettingsStore
    from branchchat.session.token_counter import TokenCounter
    from branchchat.storage.repository import ConversationRepository
    from branchchat.tree.navigator import Direction, SiblingInfo

logger = logging.getLogger(__name__)

TITLE_LENGTH = 30
ATTACHMENT_TITLE = "(attachment)"
DEFAULT_TITLE = "New Chat"
ERROR_PREFIX = "Error: "


class SendState(str, Enum):
    IDLE = "idle"
    COMPOSING = "composing"
    AWAITING_BACKEND = "awaiting-backend"
    COMMITTING_SUCCESS = "committing-success"
    CLASSIFYING_ERROR = "classifying-error"
    RETRYING = "retrying"
    AWAITING_USER_DECISION = "awaiting-user-decision"
    AWAITING_USER_ACKNOWLEDGEMENT = "awaiting-user-acknowledgement"
    CANCELLED = "cancelled"


class GenerationOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DECLINED = "declined"


class SessionBusyError(RuntimeError):
    """Raised when an operation is attempted while a send is outstanding."""


class RegenerationRejected(ValueError):
    """Raised when the regenerate trigger is not on the active path."""


@dataclass(frozen=True)
class SendResult:
    """What one send or regenerate did to the tree.

    ``node`` is the committed child (answer or terminal error); it is None
    when the operation was cancelled or the rotation prompt was declined.
    ``retry_errors`` holds the error nodes of retried attempts; they are
    never persisted.
    """

    outcome: GenerationOutcome
    trigger_id: str
    node: Node | None = None
    analysis: ErrorAnalysis | None = None
    attempts: int = 0
    retry_errors: list[Node] = field(default_factory=list)
    waited_seconds: float = 0.0


class ConversationSession:
    """Stateful front for one conversation at a time.

    Lifecycle: ``init()`` or ``load()``, any number of operations, then
    ``dispose()``.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        orchestrator: GenerationOrchestrator,
        settings_store: SettingsStore,
        *,
        composer: MessageComposer | None = None,
        listener: SessionListener | None = None,
        token_counter: TokenCounter | None = None,
        backup: BackupManager | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._settings_store = settings_store
        self._composer = composer or MessageComposer()
        self._listener = listener or SessionListener()
        self._token_counter = token_counter
        self._backup = backup
        self._sleep = sleep

        self._conversation_id = new_id()
        self._nodes: dict[str, Node] = {}
        self._path: list[Node] = []
        self._draft = ""
        self._attachments: list[Attachment] = []
        self._state = SendState.IDLE
        self._busy = False
        self._retry_count = 0
        self._token: CancellationToken | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def nodes(self) -> Mapping[str, Node]:
        return MappingProxyType(self._nodes)

    @property
    def path(self) -> list[Node]:
        """The active path, root first."""
        return list(self._path)

    @property
    def state(self) -> SendState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def retry_status(self) -> str:
        """Short progress label for the outstanding send, or empty when idle."""
        if not self._busy:
            return ""
        if self._retry_count > 0:
            max_retries = self._settings_store.value.api_error_handling.max_retries
            return f"Thinking ({self._retry_count}/{max_retries})..."
        return "Thinking..."

    @property
    def token_count(self) -> int:
        return self._token_counter.count if self._token_counter is not None else 0

    @property
    def draft(self) -> str:
        return self._draft

    @draft.setter
    def draft(self, value: str) -> None:
        self._draft = value
        self._request_token_count()

    @property
    def attachments(self) -> tuple[Attachment, ...]:
        return tuple(self._attachments)

    def add_attachment(self, attachment: Attachment) -> None:
        self._attachments.append(attachment)
        self._request_token_count()

    def remove_attachment(self, attachment_id: str) -> None:
        self._attachments = [a for a in self._attachments if a.id != attachment_id]
        self._request_token_count()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the most recently updated conversation, or start a new one."""
        await self.load(self._repository.latest_conversation_id())

    async def load(self, conversation_id: str | None = None) -> None:
        """Replace the node map with a stored conversation; None starts fresh."""
        self._ensure_idle()
        self._nodes.clear()
        if conversation_id:
            self._conversation_id = conversation_id
            for node in self._repository.list_nodes(conversation_id):
                self._nodes[node.id] = node
        else:
            self._conversation_id = new_id()
        set_conversation_id(self._conversation_id)
        self._refresh()
        logger.info(
            "Loaded conversation %s (%d nodes)", self._conversation_id, len(self._nodes)
        )

    async def dispose(self) -> None:
        """Cancel in-flight work and flush deferred writes."""
        self.stop_generation()
        if self._token_counter is not None:
            await self._token_counter.stop()
        if self._backup is not None:
            await self._backup.flush()
        await self._settings_store.flush()

    def stop_generation(self) -> None:
        """Fire the cancellation token of the outstanding send, if any."""
        if self._token is not None:
            logger.info("Generation stopped by user")
            self._token.cancel()

    # ------------------------------------------------------------------
    # Send / regenerate
    # ------------------------------------------------------------------

    async def send(self, text: str | None = None) -> SendResult | None:
        """Send ``text`` (or the draft) as a new user turn at the end of the path.

        Returns None when there is nothing to send or the user declined to
        drop expired attachments.

        Raises:
            SessionBusyError: If another send is outstanding.
            ConfigurationError: If no credential is configured; nothing is persisted.
        """
        self._ensure_idle()
        settings = self._settings_store.value
        raw = self._draft if text is None else text
        attachments = list(self._attachments)
        if not raw.strip() and not settings.has_enabled_generators() and not attachments:
            return None
        resolve_api_key(settings)

        token = self._begin()
        try:
            self._set_state(SendState.COMPOSING)
            now = datetime.now(UTC)
            expired = [a for a in attachments if a.is_expired(now)]
            if expired:
                self._set_state(SendState.AWAITING_USER_DECISION)
                try:
                    drop = await token.run(self._listener.confirm_drop_expired(expired))
                except GenerationCancelled:
                    return None
                if not drop:
                    return None
                attachments = [a for a in attachments if a not in expired]
                self._attachments = [a for a in self._attachments if a not in expired]

            composed = self._composer.compose(raw, settings)
            title = raw[:TITLE_LENGTH] or (ATTACHMENT_TITLE if attachments else DEFAULT_TITLE)
            self._repository.create_or_touch_conversation(self._conversation_id, title)

            parent = self._path[-1] if self._path else None
            user_node = Node(
                id=new_id(),
                conversation_id=self._conversation_id,
                speaker="user",
                text=composed.text,
                timestamp=utc_timestamp(),
                parent_id=parent.id if parent else None,
                token_usage=TokenUsage(),
                attachments=attachments,
            )
            self._nodes[user_node.id] = user_node
            self._repository.save_node(user_node)
            if parent is not None:
                parent.active_child_id = user_node.id
                self._repository.update_active_child(parent.id, user_node.id)
            self._refresh()

            if text is None:
                self._draft = ""
            self._attachments = []
            self._notify_backup()

            history = [node for node in self._path if node.id != user_node.id]
            return await self._generate(user_node, history, token)
        finally:
            self._end()

    async def regenerate(self, node_id: str) -> SendResult:
        """Generate a new sibling reply for a turn on the active path.

        ``node_id`` may name the user turn itself or one of its replies. The
        hidden instructions of the user turn are rolled again.

        Raises:
            SessionBusyError: If another send is outstanding.
            RegenerationRejected: If the user turn is not on the active path.
            ConfigurationError: If no credential is configured.
        """
        self._ensure_idle()
        target = self._require(node_id)
        if target.speaker == "user":
            trigger = target
        else:
            trigger = self._nodes.get(target.parent_id) if target.parent_id else None
            if trigger is None:
                msg = f"Node {node_id} has no turn to regenerate from"
                raise RegenerationRejected(msg)

        index = next((i for i, node in enumerate(self._path) if node.id == trigger.id), -1)
        if index == -1:
            msg = f"Node {trigger.id} is not on the active path"
            raise RegenerationRejected(msg)

        settings = self._settings_store.value
        resolve_api_key(settings)

        token = self._begin()
        try:
            self._set_state(SendState.COMPOSING)
            new_text = self._composer.recompose(trigger.text, settings)
            if new_text != trigger.text:
                trigger.text = new_text
                self._repository.update_node_text(trigger.id, new_text)
            history = self._path[:index]
            return await self._generate(trigger, history, token)
        finally:
            self._end()

    async def _generate(
        self,
        trigger: Node,
        history: Sequence[Node],
        token: CancellationToken,
    ) -> SendResult:
        original_active = trigger.active_child_id
        if original_active:
            trigger.active_child_id = None
            self._refresh()

        attempt = 0
        attempts = 0
        waited = 0.0
        retry_errors: list[Node] = []

        while True:
            settings = self._settings_store.value
            handling = settings.api_error_handling
            self._retry_count = attempt
            api_history, content = self._composer.build_request(
                history, trigger.text, trigger.attachments, settings
            )
            self._set_state(SendState.AWAITING_BACKEND)
            attempts += 1
            try:
                result = await self._orchestrator.generate(api_history, content, settings, token)
            except GenerationCancelled:
                return self._cancelled(trigger, original_active, attempts, retry_errors, waited)
            except ConfigurationError:
                self._restore_active_child(trigger, original_active)
                raise
            except Exception as exc:
                if token.cancelled:
                    return self._cancelled(
                        trigger, original_active, attempts, retry_errors, waited
                    )
                self._set_state(SendState.CLASSIFYING_ERROR)
                analysis = analyze_error(exc)
                error_node = self._error_node(trigger, exc, analysis)

                if (
                    analysis.category is ErrorCategory.RETRYABLE
                    and handling.exponential_backoff
                    and attempt < handling.max_retries
                ):
                    retry_errors.append(error_node)
                    delay = handling.initial_wait_seconds * 2**attempt
                    logger.warning(
                        "Retryable error (attempt %d/%d), retrying in %.1fs: %s",
                        attempt + 1,
                        handling.max_retries + 1,
                        delay,
                        analysis.technical_detail,
                    )
                    self._set_state(SendState.RETRYING)
                    try:
                        await token.sleep(delay, self._sleep)
                    except GenerationCancelled:
                        return self._cancelled(
                            trigger, original_active, attempts, retry_errors, waited
                        )
                    waited += delay
                    attempt += 1
                    continue

                if (
                    analysis.category is ErrorCategory.QUOTA_EXCEEDED
                    and handling.loop_api_keys
                    and len(settings.api_keys) > 1
                ):
                    self._set_state(SendState.AWAITING_USER_DECISION)
                    upcoming = settings.next_api_key()
                    try:
                        approved = upcoming is not None and await token.run(
                            self._listener.confirm_key_rotation(
                                settings.active_api_key(), upcoming
                            )
                        )
                    except GenerationCancelled:
                        return self._cancelled(
                            trigger, original_active, attempts, retry_errors, waited
                        )
                    if not approved:
                        logger.info("Key rotation declined for turn %s", trigger.id)
                        self._restore_active_child(trigger, original_active)
                        return SendResult(
                            outcome=GenerationOutcome.DECLINED,
                            trigger_id=trigger.id,
                            analysis=analysis,
                            attempts=attempts,
                            retry_errors=retry_errors,
                            waited_seconds=waited,
                        )
                    self._settings_store.rotate_api_key()
                    attempt = 0
                    continue

                logger.error("Generation failed: %s", analysis.technical_detail)
                self._commit_child(trigger, error_node)
                self._set_state(SendState.AWAITING_USER_ACKNOWLEDGEMENT)
                self._listener.acknowledge_error(analysis)
                return SendResult(
                    outcome=GenerationOutcome.FAILED,
                    trigger_id=trigger.id,
                    node=error_node,
                    analysis=analysis,
                    attempts=attempts,
                    retry_errors=retry_errors,
                    waited_seconds=waited,
                )

            if token.cancelled:
                return self._cancelled(trigger, original_active, attempts, retry_errors, waited)
            self._set_state(SendState.COMMITTING_SUCCESS)
            node = self._commit_success(trigger, result)
            if result.cost_alert_triggered and result.cost_threshold is not None:
                self._listener.cost_alert(result.cost_threshold)
            return SendResult(
                outcome=GenerationOutcome.SUCCEEDED,
                trigger_id=trigger.id,
                node=node,
                attempts=attempts,
                retry_errors=retry_errors,
                waited_seconds=waited,
            )

    def _commit_success(self, trigger: Node, result: GenerationResult) -> Node:
        trigger.metadata = {**(trigger.metadata or {}), **result.request_payload}
        self._repository.update_node_metadata(trigger.id, trigger.metadata)

        annotation = finish_reason_annotation(result.finish_reason)
        text = result.answer + annotation if annotation else result.answer
        node = Node(
            id=new_id(),
            conversation_id=self._conversation_id,
            speaker="model",
            text=text,
            timestamp=utc_timestamp(),
            parent_id=trigger.id,
            metadata={**result.metadata, "finishReason": result.finish_reason},
            token_usage=result.token_usage or TokenUsage(),
            reasoning=result.reasoning,
        )
        self._commit_child(trigger, node)
        return node

    def _error_node(self, trigger: Node, exc: Exception, analysis: ErrorAnalysis) -> Node:
        status = error_status(exc)
        message = error_message(exc)
        raw = drop_none(
            {
                "type": type(exc).__name__,
                "message": message,
                "status": status,
                "requestPayload": getattr(exc, "request_payload", None),
            }
        )
        return Node(
            id=new_id(),
            conversation_id=self._conversation_id,
            speaker="model",
            text=f"{ERROR_PREFIX}{analysis.user_message}",
            timestamp=utc_timestamp(),
            parent_id=trigger.id,
            metadata={
                "error": {
                    "message": message,
                    "status": status,
                    "category": analysis.category.value,
                    "technicalDetail": analysis.technical_detail,
                    "raw": raw,
                }
            },
            token_usage=TokenUsage(),
            reasoning=analysis.technical_detail,
        )

    def _commit_child(self, parent: Node, child: Node) -> None:
        """Persist ``child`` and make it the active reply of ``parent``."""
        self._nodes[child.id] = child
        self._repository.save_node(child)
        parent.active_child_id = child.id
        self._repository.update_active_child(parent.id, child.id)
        self._repository.touch_conversation(self._conversation_id)
        self._refresh()
        self._notify_backup()

    def _cancelled(
        self,
        trigger: Node,
        original_active: str | None,
        attempts: int,
        retry_errors: list[Node],
        waited: float,
    ) -> SendResult:
        logger.info("Generation for turn %s cancelled", trigger.id)
        self._set_state(SendState.CANCELLED)
        self._restore_active_child(trigger, original_active)
        return SendResult(
            outcome=GenerationOutcome.CANCELLED,
            trigger_id=trigger.id,
            attempts=attempts,
            retry_errors=retry_errors,
            waited_seconds=waited,
        )

    def _restore_active_child(self, trigger: Node, original_active: str | None) -> None:
        if trigger.active_child_id != original_active:
            trigger.active_child_id = original_active
            self._refresh()

    # ------------------------------------------------------------------
    # Tree edits
    # ------------------------------------------------------------------

    def edit(self, node_id: str, visible_text: str) -> Node:
        """Replace the visible text of a node; hidden instructions are kept."""
        self._ensure_idle()
        node = self._require(node_id)
        new_text = merge_hidden(node.text, visible_text)
        node.text = new_text
        self._repository.update_node_text(node_id, new_text)
        self._refresh()
        self._notify_backup()
        return node

    def visible_text(self, node_id: str) -> str:
        return extract_visible(self._require(node_id).text)

    def delete(self, node_id: str) -> None:
        """Remove one node, re-parenting its children to its parent."""
        self._ensure_idle()
        target = self._require(node_id)
        parent_id = target.parent_id
        parent = self._nodes.get(parent_id) if parent_id else None
        children = [node for node in self._nodes.values() if node.parent_id == node_id]

        for child in children:
            child.parent_id = parent_id
            self._repository.update_node_parent(child.id, parent_id)

        if parent is not None:
            next_active: str | None = None
            if target.active_child_id and any(
                child.id == target.active_child_id for child in children
            ):
                next_active = target.active_child_id
            if next_active is None:
                next_active = reattachment_after_deletion(parent.id, node_id, self._nodes)
            parent.active_child_id = next_active
            self._repository.update_active_child(parent.id, next_active)

        del self._nodes[node_id]
        self._repository.delete_node(node_id)
        self._refresh()
        self._notify_backup()
        logger.debug("Deleted node %s (%d children re-parented)", node_id, len(children))

    def sibling_info(self, node_id: str) -> SiblingInfo:
        return sibling_info(node_id, self._nodes)

    def switch_branch(self, node_id: str, direction: Direction) -> bool:
        """Make the previous or next sibling active; return False at a boundary."""
        self._ensure_idle()
        target_id = adjacent_sibling(node_id, direction, self._nodes)
        if target_id is None:
            return False
        node = self._nodes[node_id]
        parent = self._nodes.get(node.parent_id) if node.parent_id else None
        if parent is None:
            return False
        parent.active_child_id = target_id
        self._repository.update_active_child(parent.id, target_id)
        self._refresh()
        return True

    # ------------------------------------------------------------------
    # Conversation-level operations
    # ------------------------------------------------------------------

    def rename(self, title: str) -> ConversationMeta:
        meta = self._repository.update_conversation_title(self._conversation_id, title)
        self._notify_backup()
        return meta

    def conversation(self) -> ConversationMeta | None:
        return self._repository.get_conversation(self._conversation_id)

    def list_conversations(self) -> list[ConversationMeta]:
        return self._repository.list_conversations()

    def duplicate(self) -> ConversationMeta:
        """Copy the current conversation; the copy is not opened."""
        meta = self._repository.duplicate_conversation(self._conversation_id)
        self._notify_backup(meta.id)
        return meta

    async def delete_conversation(self) -> None:
        """Delete the current conversation and start a fresh one."""
        self._ensure_idle()
        self._repository.delete_conversation(self._conversation_id)
        logger.info("Deleted conversation %s", self._conversation_id)
        await self.load(None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            msg = f"Unknown node: {node_id}"
            raise ValueError(msg)
        return node

    def _ensure_idle(self) -> None:
        if self._busy:
            msg = "A generation is already in progress"
            raise SessionBusyError(msg)

    def _begin(self) -> CancellationToken:
        self._busy = True
        self._retry_count = 0
        self._token = CancellationToken()
        return self._token

    def _end(self) -> None:
        self._busy = False
        self._retry_count = 0
        self._token = None
        self._set_state(SendState.IDLE)
        self._request_token_count()

    def _set_state(self, state: SendState) -> None:
        if state is self._state:
            return
        logger.debug("Send state %s -> %s", self._state.value, state.value)
        self._state = state
        self._listener.state_changed(state)

    def _refresh(self) -> None:
        self._path = active_path(self._nodes)
        self._request_token_count()

    def _request_token_count(self) -> None:
        if self._token_counter is not None:
            self._token_counter.request_count(self._path, self._draft, self._attachments)

    def _notify_backup(self, conversation_id: str | None = None) -> None:
        if self._backup is not None:
            self._backup.notify_change(conversation_id or self._conversation_id)
