"""TUI Dashboard for sshfan."""

from dataclasses import dataclass

from rich.text import Text
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .config import Settings
from .dispatcher import Dispatcher
from .hosts import HostDirectory
from .session import SessionStatus

STATUS_COLORS = {
    SessionStatus.PENDING: "dim",
    SessionStatus.CONNECTING: "yellow",
    SessionStatus.RUNNING: "yellow",
    SessionStatus.DONE: "green",
    SessionStatus.FAILED: "red",
}


def style_line(text: str, is_error: bool = False) -> Text:
    """Rich text for one line of host output."""
    if is_error or text.startswith("ERROR:"):
        return Text(text, style="red")
    if text == "DONE!":
        return Text(text, style="green")
    return Text(text)


class HostPanel(Static):
    """A panel displaying output for a single host."""

    status: reactive[SessionStatus] = reactive(SessionStatus.PENDING)

    def __init__(self, host: str, user: str | None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host = host
        self.user = user

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), classes="header")
        yield RichLog(highlight=False, markup=False, wrap=True, auto_scroll=True)

    def _get_header(self) -> Text:
        color = STATUS_COLORS.get(self.status, "white")
        target = f"{self.user}@{self.host}" if self.user else self.host
        return Text.assemble((target, f"bold {color}"), " ", (self.status.value, color))

    def watch_status(self, status: SessionStatus) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        self.query_one(".header", Label).update(self._get_header())

    def append_output(self, text: str, is_error: bool = False) -> None:
        """Append a line of output to this panel."""
        self.query_one(RichLog).write(style_line(text, is_error))


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} sessions finished | {status} | Press 'q' to quit"


@dataclass
class HostOutput(Message):
    """Message for host output."""

    host: str
    text: str
    is_error: bool = False


@dataclass
class HostStatusChange(Message):
    """Message for session status change."""

    host: str
    status: SessionStatus


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self,
        directory: HostDirectory,
        settings: Settings,
        hosts: list[str],
        commands: list[str],
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.dispatcher = Dispatcher(
            directory,
            settings,
            on_output=self._on_output,
            on_error=self._on_error,
            on_status=self._on_status,
        )
        self.hosts = hosts
        self.commands = commands
        self.panels: dict[str, HostPanel] = {}
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        # One panel per distinct host, sessions for the same host share it
        resolved = self.dispatcher.resolve_hosts(self.hosts)
        for i, host in enumerate(dict.fromkeys(resolved)):
            panel = HostPanel(host, self.dispatcher.directory.user_for(host), id=f"panel-{i}")
            self.panels[host] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.dispatcher.plan(self.hosts, self.commands))
        self._worker = self.run_worker(self._run_execution, exclusive=True, thread=True)

    def _run_execution(self) -> None:
        """Run the dispatcher; callbacks arrive on the worker thread."""
        self.dispatcher.run(self.hosts, self.commands)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_output(self, host: str, text: str) -> None:
        self.post_message(HostOutput(host, text))

    def _on_error(self, host: str, text: str) -> None:
        self.post_message(HostOutput(host, text, is_error=True))

    def _on_status(self, host: str, status: SessionStatus) -> None:
        self.post_message(HostStatusChange(host, status))

    def on_host_output(self, message: HostOutput) -> None:
        if message.host in self.panels:
            self.panels[message.host].append_output(message.text, message.is_error)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        if message.host in self.panels:
            self.panels[message.host].status = message.status

        # Update completed count
        if message.status in (SessionStatus.DONE, SessionStatus.FAILED):
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
