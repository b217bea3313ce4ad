from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Static, Input
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
from rich.text import Text
import logging

from . import auth_storage
from .api_interface import RealAPI
from .attachments import StagedFile, is_preview
from .config import Settings
from .data_models import Message, Notice, ServerId, Thread
from .engine import ChatEngine
from .errors import ChatError
from .mutations import MutationStatus

HELP = "/attach <path>  /unstage <n>  /delete <id>  /block  /search <q>  /dm <userId>  /open <threadId>  /login <token> <userId>  /logout"


def format_time_ago(dt: Optional[datetime]) -> str:
    """Format datetime as 'time ago' string."""
    if dt is None:
        return ""
    now = datetime.now(timezone.utc)
    diff = now - dt
    if diff.days > 0:
        return f"{diff.days}d ago"
    if diff.seconds < 60:
        return "just now"
    if diff.seconds < 3600:
        return f"{diff.seconds // 60}m ago"
    return f"{diff.seconds // 3600}h ago"


def render_threads(threads: Iterable[Thread], active_id: Optional[int]) -> Text:
    text = Text()
    unread_total = 0
    rows = Text()
    for thread in threads:
        unread_total += thread.unread_count
        marker = "▶ " if thread.id == active_id else "  "
        rows.append(marker)
        rows.append(f"[{thread.id}] {thread.display_name}", style="bold" if thread.unread_count else "")
        if thread.online:
            rows.append(" ●", style="green")
        if thread.blocked:
            rows.append(" (blocked)", style="red")
        if thread.unread_count:
            rows.append(f" ({thread.unread_count})", style="bold cyan")
        rows.append(f"\n    {thread.last_message_preview[:40]}  {format_time_ago(thread.last_message_time)}\n", style="dim")
    text.append(f"conversations | {unread_total} unread\n", style="bold")
    text.append_text(rows)
    return text


def render_messages(messages: Iterable[Message], statuses: Dict, user_id: int) -> Text:
    text = Text()
    for msg in messages:
        who = "you" if msg.sender_id == user_id else (msg.sender_name or f"user {msg.sender_id}")
        ident = str(msg.id) if isinstance(msg.id, ServerId) else "…"
        text.append(f"[{ident}] {who}: ", style="bold")
        text.append(msg.content)
        status = statuses.get(msg.id)
        if msg.provisional and status is MutationStatus.IN_FLIGHT:
            text.append("  sending", style="dim italic")
        elif status is MutationStatus.FAILED:
            text.append("  delete failed", style="red")
        text.append("\n")
        for att in msg.attachments:
            style = "yellow" if is_preview(att.url) else "blue underline"
            text.append(f"    📎 {att.kind}: {att.display_name} <{att.url}>\n", style=style)
    return text


def render_staged(files: Iterable[StagedFile]) -> Text:
    text = Text()
    for i, staged in enumerate(files):
        text.append(f"[{i}] {staged.kind}: {staged.display_name}  ", style="yellow")
    return text


class ConversationsList(Static):
    def show(self, threads, active_id) -> None:
        self.update(render_threads(threads, active_id))


class ChatView(Static):
    def show(self, engine: ChatEngine) -> None:
        thread = engine.active_thread
        if thread is None:
            self.update(Text("no conversation open | " + HELP, style="dim"))
            return
        header = Text(f"@{thread.display_name} | conversation\n", style="bold")
        if thread.blocked:
            header.append("you blocked this user\n", style="red")
        statuses = {m.id: engine.status_for(m.id) for m in engine.messages}
        header.append_text(render_messages(engine.messages, statuses, engine.user_id))
        self.update(header)


class ChatApp(App):
    CSS = """
    #conversations { width: 40; border: round $accent; }
    #chat { border: round $accent; height: 1fr; }
    #staged { height: auto; }
    #status { height: 1; color: $warning; }
    """

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit"),
        Binding("ctrl+b", "toggle_block", "Block/unblock"),
        Binding("escape", "close_thread", "Close thread"),
    ]

    def __init__(self, engine: Optional[ChatEngine] = None, api=None, settings: Optional[Settings] = None, **kwargs):
        super().__init__(**kwargs)
        settings = settings or Settings()
        if engine is None:
            user_id = settings.user_id
            if api is None:
                api = RealAPI.from_settings(settings)
                if user_id is None:
                    user_id = auth_storage.load_user_id()
            engine = ChatEngine(
                api,
                settings=settings,
                set_interval=self.set_interval,
                on_notice=self._show_notice,
                user_id=user_id or 0,
            )
        self.engine = engine

    def compose(self) -> ComposeResult:
        with Horizontal():
            yield ConversationsList(id="conversations")
            with Vertical():
                yield ChatView(id="chat")
                yield Static(id="staged")
                yield Static(id="status")
                yield Input(placeholder="Type message and press Enter… (/help for commands)", id="message-input")

    def on_mount(self) -> None:
        self.engine.show_surface()
        self.set_interval(0.5, self.refresh_views)
        self.query_one("#message-input", Input).focus()

    def refresh_views(self) -> None:
        self.query_one("#conversations", ConversationsList).show(
            self.engine.threads, self.engine.thread_store.active_id
        )
        self.query_one("#chat", ChatView).show(self.engine)
        self.query_one("#staged", Static).update(render_staged(self.engine.staged))

    def _show_notice(self, notice: Notice) -> None:
        try:
            self.query_one("#status", Static).update(notice.text)
        except Exception:
            # not mounted yet
            logging.debug("notice before mount: %s", notice.text)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "message-input":
            return
        value = event.value
        event.input.value = ""
        self.run_worker(self.run_command(value), group="chat-actions")

    async def run_command(self, value: str) -> None:
        """Run one line typed into the compose box."""
        engine = self.engine
        if not value.startswith("/"):
            await engine.send(value)
            self.refresh_views()
            return

        command, _, arg = value[1:].partition(" ")
        arg = arg.strip()
        try:
            if command == "attach":
                engine.staging.stage(arg)
            elif command == "unstage":
                engine.staging.unstage(int(arg))
            elif command == "delete":
                await engine.delete(ServerId(int(arg)))
            elif command == "block":
                await engine.toggle_block()
            elif command == "search":
                users = await engine.search_users(arg)
                self._status(", ".join(f"{u.id}:{u.username}" for u in users) or "no users found")
            elif command == "dm":
                await engine.start_thread(int(arg))
            elif command == "open":
                engine.open_thread(int(arg))
            elif command == "login":
                token, _, user_id = arg.partition(" ")
                await self.login(token, user_id.strip())
            elif command == "logout":
                auth_storage.clear_token()
                self._status("signed out")
            else:
                self._status(HELP)
        except (ChatError, ValueError, IndexError) as e:
            self._status(str(e))
        self.refresh_views()

    async def login(self, token: str, user_id: str) -> None:
        """Store a bearer token and the signed-in user id, then reload threads."""
        uid = int(user_id)
        auth_storage.save_token(token, user_id=uid)
        if isinstance(self.engine.api, RealAPI):
            self.engine.api.set_token(token)
        self.engine.user_id = uid
        await self.engine.refresh_threads()
        self._status(f"signed in as user {uid}")

    def _status(self, text: str) -> None:
        self.query_one("#status", Static).update(text)

    async def action_toggle_block(self) -> None:
        await self.engine.toggle_block()
        self.refresh_views()

    def action_close_thread(self) -> None:
        self.engine.close_thread()
        self.refresh_views()

    async def on_unmount(self) -> None:
        self.engine.hide_surface()


def main():
    settings = Settings.from_env()
    logging.debug("starting chatsync against %s", settings.backend_url)
    try:
        ChatApp(settings=settings).run()
    except Exception:
        logging.exception("Exception occurred while running ChatApp:")


if __name__ == "__main__":
    main()
