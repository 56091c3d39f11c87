"""One command on one host over one dedicated SSH connection."""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator

import paramiko

logger = logging.getLogger(__name__)

READ_BUFFER_SIZE = 32768


class SessionStatus(Enum):
    """Status of a session's execution."""

    PENDING = "pending"
    CONNECTING = "connecting"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class EventKind(Enum):
    """Kind of event delivered by a remote channel."""

    DATA = "data"
    EXTENDED_DATA = "extended_data"
    CLOSED = "closed"


@dataclass(frozen=True)
class ChannelEvent:
    kind: EventKind
    data: bytes = b""
    error: str | None = None


# Type aliases for callbacks
OutputCallback = Callable[[str, str], None]  # (host, text) -> None
StatusCallback = Callable[[str, SessionStatus], None]  # (host, status) -> None

# Errors raised while connecting that only affect the session's own host
STARTUP_ERRORS = (OSError, paramiko.SSHException, ValueError)

# Errors raised while opening the exec channel on a connected transport
CHANNEL_ERRORS = (paramiko.SSHException, EOFError, OSError)


class LineBuffer:
    """Decodes chunks and hands back complete lines only."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""

    def feed(self, chunk: bytes) -> list[str]:
        lines = (self._partial + self._decoder.decode(chunk)).split("\n")
        self._partial = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        rest = self._partial + self._decoder.decode(b"", final=True)
        self._partial = ""
        if not rest:
            return []
        return [rest.rstrip("\r")]


class RemoteSession:
    """Runs a single command on a single host.

    Output is reported through ``on_output`` as text without the host
    prefix: stdout lines verbatim, stderr lines as ``ERROR: <line>``, and a
    final ``DONE!`` once the channel closes. Failures to open the channel are
    reported through ``on_error``.
    """

    def __init__(
        self,
        host: str,
        command: str,
        user: str | None = None,
        on_output: OutputCallback | None = None,
        on_error: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
        connect_options: dict[str, Any] | None = None,
        strict_host_keys: bool = False,
    ):
        self.host = host
        self.command = command
        self.user = user
        self.on_output = on_output
        self.on_error = on_error
        self.on_status = on_status
        self.connect_options = connect_options or {}
        self.strict_host_keys = strict_host_keys
        self.status = SessionStatus.PENDING
        self._client: paramiko.SSHClient | None = None
        self._channel: paramiko.Channel | None = None
        self._fileno: int | None = None
        self._stdout = LineBuffer()
        self._stderr = LineBuffer()

    def __repr__(self) -> str:
        return f"<RemoteSession {self.host!r} {self.command!r} {self.status.value}>"

    def is_busy(self) -> bool:
        return self.status not in (SessionStatus.DONE, SessionStatus.FAILED)

    def fileno(self) -> int:
        """File descriptor that becomes readable when the channel has events.

        The number stays the same after the channel is closed so a selector
        can still unregister the session.
        """
        if self._fileno is None:
            raise ValueError(f"Session for {self.host} has no open channel")
        return self._fileno

    def start(self) -> None:
        """Connect and request execution of the command.

        Connection errors propagate to the caller after the session is
        marked failed. A refused channel is reported and ends the session.
        """
        self._set_status(SessionStatus.CONNECTING)
        try:
            client = self._connection()
        except Exception:
            self._set_status(SessionStatus.FAILED)
            raise

        try:
            channel = client.get_transport().open_session(timeout=self.connect_options.get("timeout"))
            channel.exec_command(self.command)
            fileno = channel.fileno()
        except CHANNEL_ERRORS as e:
            logger.warning("%s: channel open failed: %s", self.host, e)
            if self.on_error:
                self.on_error(self.host, f"ERROR: {getattr(e, 'text', None) or str(e) or type(e).__name__}")
            client.close()
            self._set_status(SessionStatus.FAILED)
            return
        except Exception:
            client.close()
            self._set_status(SessionStatus.FAILED)
            raise

        self._channel = channel
        self._fileno = fileno
        self._set_status(SessionStatus.RUNNING)

    def _connection(self) -> paramiko.SSHClient:
        """Open this session's own connection on first use."""
        if self._client is None:
            options = dict(self.connect_options)
            hostname = options.pop("hostname", self.host)
            if self.user is not None:
                options["username"] = self.user

            client = paramiko.SSHClient()
            if self.strict_host_keys:
                client.load_system_host_keys()
                client.set_missing_host_key_policy(paramiko.RejectPolicy())
            else:
                client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

            logger.info("Connecting to %s%s", f"{self.user}@" if self.user else "", hostname)
            try:
                client.connect(hostname, **options)
            except Exception:
                client.close()
                raise
            self._client = client
        return self._client

    def advance(self) -> None:
        """Handle every event the channel has pending, without blocking."""
        for event in self._pending_events():
            self.handle(event)

    def _pending_events(self) -> Iterator[ChannelEvent]:
        channel = self._channel
        if channel is None or not self.is_busy():
            return

        while channel.recv_ready():
            data = channel.recv(READ_BUFFER_SIZE)
            if not data:
                break
            yield ChannelEvent(EventKind.DATA, data)

        while channel.recv_stderr_ready():
            data = channel.recv_stderr(READ_BUFFER_SIZE)
            if not data:
                break
            yield ChannelEvent(EventKind.EXTENDED_DATA, data)

        if channel.recv_ready() or channel.recv_stderr_ready():
            return

        transport = self._client.get_transport() if self._client else None
        if transport is None or not transport.is_active():
            yield ChannelEvent(EventKind.CLOSED, error="connection lost")
        elif channel.closed or (channel.eof_received and channel.exit_status_ready()):
            yield ChannelEvent(EventKind.CLOSED)

    def handle(self, event: ChannelEvent) -> None:
        """Process one channel event; events after close are ignored."""
        if not self.is_busy():
            return

        if event.kind is EventKind.DATA:
            for line in self._stdout.feed(event.data):
                self._emit(line)
        elif event.kind is EventKind.EXTENDED_DATA:
            for line in self._stderr.feed(event.data):
                self._emit(f"ERROR: {line}")
        else:
            for line in self._stdout.flush():
                self._emit(line)
            for line in self._stderr.flush():
                self._emit(f"ERROR: {line}")
            if event.error is not None:
                logger.warning("%s: %s", self.host, event.error)
            self._emit("DONE!")
            self.close()
            self._set_status(SessionStatus.DONE)

    def close(self) -> None:
        """Release the channel and connection owned by this session."""
        if self._channel is not None:
            self._channel.close()
        if self._client is not None:
            self._client.close()

    def _emit(self, text: str) -> None:
        if self.on_output:
            self.on_output(self.host, text)

    def _set_status(self, status: SessionStatus) -> None:
        self.status = status
        if self.on_status:
            self.on_status(self.host, status)
