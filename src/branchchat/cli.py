"""Interactive command-line front end."""

from __future__ import annotations

import argparse
import asyncio
import base64
import contextlib
import mimetypes
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from branchchat.backup.manager import BackupManager, DirectoryBackupTarget
from branchchat.composer.composer import MessageComposer
from branchchat.generation.gemini import GeminiClient
from branchchat.generation.orchestrator import ConfigurationError, GenerationOrchestrator
from branchchat.models.nodes import Attachment
from branchchat.models.settings import SettingsStore, data_dir, load_settings, settings_path
from branchchat.session.chat import (
    ConversationSession,
    GenerationOutcome,
    RegenerationRejected,
    SessionBusyError,
)
from branchchat.session.listener import SessionListener
from branchchat.session.token_counter import TokenCounter
from branchchat.storage.sqlite import SQLiteRepository
from branchchat.telemetry.logging_utils import configure_logging
from branchchat.utils import new_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from branchchat.generation.classifier import ErrorAnalysis
    from branchchat.models.settings import ApiKey
    from branchchat.session.chat import SendResult


DATABASE_FILE = "branchchat.db"
BACKUP_DIR = "backups"

HELP_TEXT = """Commands:
  /regen [n]        regenerate the reply to turn n (default: last)
  /edit n TEXT      replace the visible text of turn n
  /delete n         delete turn n; its replies move up
  /prev n, /next n  switch turn n to its previous or next sibling
  /new              start a new conversation
  /list             list stored conversations
  /load ID          open a stored conversation
  /title TEXT       rename the current conversation
  /dup              duplicate the current conversation
  /attach PATH      attach a file to the next message
  /tokens           show the token estimate for the draft
  /backup           back up every conversation now
  /help             show this help
  /quit             exit
Anything else is sent as a message. Ctrl-C stops a running generation."""


def _write_line(message: str = "") -> None:
    sys.stdout.write(f"{message}\n")
    sys.stdout.flush()


class CliListener(SessionListener):
    """Answer session prompts on the terminal."""

    async def _ask(self, question: str) -> bool:
        answer = await asyncio.to_thread(input, f"{question} [y/N] ")
        return answer.strip().lower() in {"y", "yes"}

    async def confirm_key_rotation(self, current: ApiKey | None, upcoming: ApiKey) -> bool:
        name = current.name if current else "the current key"
        return await self._ask(
            f"Rate limit reached on {name}. Retry with {upcoming.name}?"
        )

    async def confirm_drop_expired(self, expired: Sequence[Attachment]) -> bool:
        names = ", ".join(attachment.name for attachment in expired)
        return await self._ask(f"Expired attachments ({names}). Send without them?")

    def acknowledge_error(self, analysis: ErrorAnalysis) -> None:
        _write_line(f"[error] {analysis.user_message}")

    def cost_alert(self, threshold: float) -> None:
        _write_line(f"[cost] Usage crossed the ${threshold:.2f} alert threshold.")


def render_path(session: ConversationSession) -> None:
    """Print the active path with turn numbers and branch positions."""
    meta = session.conversation()
    _write_line(f"== {meta.title if meta else '(new conversation)'} ==")
    for index, node in enumerate(session.path, start=1):
        info = session.sibling_info(node.id)
        branch = f" <{info.current}/{info.total}>" if info.total > 1 else ""
        label = "you" if node.speaker == "user" else "model"
        _write_line(f"[{index}] {label}{branch}: {session.visible_text(node.id)}")


def _node_id(session: ConversationSession, ref: str | None) -> str:
    path = session.path
    if not path:
        msg = "The conversation is empty"
        raise ValueError(msg)
    if ref is None:
        return path[-1].id
    index = int(ref)
    if index < 1 or index > len(path):
        msg = f"Turn {index} is not on the current path"
        raise ValueError(msg)
    return path[index - 1].id


def load_attachment(path: Path) -> Attachment:
    """Read a local file into an inline attachment."""
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return Attachment(id=new_id(), name=path.name, mime_type=mime_type, data=data)


def _report(result: SendResult | None, session: ConversationSession) -> None:
    if result is None:
        _write_line("(nothing sent)")
        return
    if result.outcome is GenerationOutcome.CANCELLED:
        _write_line("(generation stopped)")
    elif result.outcome is GenerationOutcome.DECLINED:
        _write_line("(retry declined)")
    render_path(session)


async def _run_generation(
    session: ConversationSession, operation: Awaitable[SendResult | None]
) -> SendResult | None:
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, session.stop_generation)
        installed = True
    try:
        return await operation
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def handle_command(
    session: ConversationSession, line: str, backup: BackupManager | None = None
) -> bool:
    """Run one REPL line; return False when the user asked to quit."""
    command, _, rest = line.partition(" ")
    rest = rest.strip()
    args = rest.split()

    if command in {"/quit", "/exit"}:
        return False
    if command == "/help":
        _write_line(HELP_TEXT)
    elif command == "/regen":
        node_id = _node_id(session, args[0] if args else None)
        _report(await _run_generation(session, session.regenerate(node_id)), session)
    elif command == "/edit":
        ref, _, text = rest.partition(" ")
        session.edit(_node_id(session, ref), text)
        render_path(session)
    elif command == "/delete":
        session.delete(_node_id(session, args[0] if args else None))
        render_path(session)
    elif command in {"/prev", "/next"}:
        direction = "prev" if command == "/prev" else "next"
        if not session.switch_branch(_node_id(session, args[0] if args else None), direction):
            _write_line("(no sibling in that direction)")
        render_path(session)
    elif command == "/new":
        await session.load(None)
        _write_line("(new conversation)")
    elif command == "/list":
        for meta in session.list_conversations():
            _write_line(f"{meta.id}  {meta.updated_at}  {meta.title}")
    elif command == "/load":
        await session.load(rest)
        render_path(session)
    elif command == "/title":
        session.rename(rest)
        _write_line(f"(renamed to {rest!r})")
    elif command == "/dup":
        meta = session.duplicate()
        _write_line(f"(duplicated as {meta.id}: {meta.title})")
    elif command == "/attach":
        attachment = load_attachment(Path(rest).expanduser())
        session.add_attachment(attachment)
        _write_line(f"(attached {attachment.name}, {attachment.mime_type})")
    elif command == "/tokens":
        _write_line(f"~{session.token_count} tokens")
    elif command == "/backup":
        if backup is None:
            _write_line("(backups are not configured)")
        else:
            await backup.force_backup_all()
            _write_line("(backup complete)")
    elif command.startswith("/"):
        _write_line(f"Unknown command {command}. Type /help.")
    else:
        session.draft = line
        _report(await _run_generation(session, session.send()), session)
    return True


async def repl(
    session: ConversationSession,
    backup: BackupManager | None = None,
    conversation_id: str | None = None,
) -> None:
    """Read commands until EOF or /quit."""
    if conversation_id:
        await session.load(conversation_id)
    else:
        await session.init()
    render_path(session)
    _write_line("Type /help for commands.")
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue
        try:
            if not await handle_command(session, line, backup):
                break
        except ConfigurationError as exc:
            _write_line(f"[config] {exc} Set BRANCHCHAT_API_KEYS or edit the settings file.")
        except (RegenerationRejected, SessionBusyError, ValueError, OSError) as exc:
            _write_line(f"[error] {exc}")


async def run(args: argparse.Namespace) -> int:
    settings_file = Path(args.settings) if args.settings else settings_path()
    settings = load_settings(settings_file)
    store = SettingsStore(settings, path=settings_file)
    base_dir = Path(args.data_dir) if args.data_dir else data_dir()

    repository = SQLiteRepository(base_dir / DATABASE_FILE)
    client = GeminiClient()
    composer = MessageComposer()
    backup = BackupManager(repository, DirectoryBackupTarget(base_dir / BACKUP_DIR), store)
    session = ConversationSession(
        repository,
        GenerationOrchestrator(client),
        store,
        composer=composer,
        listener=CliListener(),
        token_counter=TokenCounter(client, composer, store),
        backup=backup,
    )
    try:
        await repl(session, backup, args.conversation)
    finally:
        await session.dispose()
        await client.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="branchchat", description="Branching conversation client for Gemini"
    )
    parser.add_argument("--settings", help="Path to the settings JSON file")
    parser.add_argument("--data-dir", help="Directory for the database and backups")
    parser.add_argument("--conversation", help="Conversation id to open")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
