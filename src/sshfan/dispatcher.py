"""Fan-out engine running every command on every host."""

from __future__ import annotations

import logging
import selectors
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterable, Sequence

from .config import Settings
from .hosts import HostDirectory
from .session import (
    STARTUP_ERRORS,
    ChannelEvent,
    EventKind,
    OutputCallback,
    RemoteSession,
    SessionStatus,
    StatusCallback,
)

logger = logging.getLogger(__name__)


def print_output(host: str, text: str) -> None:
    print(f"{host}: {text}", flush=True)


def print_error(host: str, text: str) -> None:
    print(f"{host}: {text}", file=sys.stderr, flush=True)


class Dispatcher:
    """Starts one session per (command, host) pair and drives them all.

    Everything runs on the calling thread: sessions are started one after
    another, then a single loop waits on all open channels with a bounded
    timeout and advances each of them until none is busy.
    """

    def __init__(
        self,
        directory: HostDirectory,
        settings: Settings | None = None,
        on_output: OutputCallback | None = print_output,
        on_error: OutputCallback | None = print_error,
        on_status: StatusCallback | None = None,
    ):
        self.directory = directory
        self.settings = settings or Settings()
        self.on_output = on_output
        self.on_error = on_error
        self.on_status = on_status
        self.sessions: list[RemoteSession] = []
        self._log_dir: Path | None = None

    def resolve_hosts(self, identifiers: Iterable[str]) -> list[str]:
        """Expand identifiers into hosts, keeping order and duplicates."""
        hosts: list[str] = []
        for identifier in identifiers:
            hosts.extend(self.directory.resolve(identifier))
        return hosts

    def plan(self, identifiers: Iterable[str], commands: Sequence[str]) -> list[tuple[str, str]]:
        """Return the (command, host) pairs in command-major order."""
        hosts = self.resolve_hosts(identifiers)
        return [(command, host) for command in commands for host in hosts]

    def _setup_logging(self) -> None:
        """Set up the transcript directory with a timestamp."""
        if self.settings.log_dir is None:
            return
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._log_dir = self.settings.log_dir / timestamp
        self._log_dir.mkdir(parents=True, exist_ok=True)

    def _write_transcript(self, host: str, text: str) -> None:
        if self._log_dir is None:
            return
        with open(self._log_dir / f"{host}.log", "a") as f:
            f.write(text + "\n")

    def _emit_output(self, host: str, text: str) -> None:
        self._write_transcript(host, text)
        if self.on_output:
            self.on_output(host, text)

    def _emit_error(self, host: str, text: str) -> None:
        self._write_transcript(host, text)
        if self.on_error:
            self.on_error(host, text)

    def _emit_status(self, host: str, status: SessionStatus) -> None:
        if self.on_status:
            self.on_status(host, status)

    def run(self, identifiers: Iterable[str], commands: Sequence[str]) -> list[RemoteSession]:
        """Run every command on every resolved host until all are done.

        A host that cannot be reached only loses its own sessions; the run
        as a whole always completes. Returns every session attempted.
        """
        self._setup_logging()
        ssh_options = self.settings.load_ssh_options()

        self.sessions = []
        active: list[RemoteSession] = []
        for command, host in self.plan(identifiers, commands):
            session = RemoteSession(
                host,
                command,
                user=self.directory.user_for(host),
                on_output=self._emit_output,
                on_error=self._emit_error,
                on_status=self._emit_status,
                connect_options=self.settings.connect_options(host, ssh_options),
                strict_host_keys=self.settings.strict_host_keys,
            )
            self.sessions.append(session)
            if self._start(session):
                active.append(session)

        logger.info("Started %d of %d sessions", len(active), len(self.sessions))
        self._drive(active)
        return self.sessions

    def _start(self, session: RemoteSession) -> bool:
        """Start one session, reporting failures instead of raising."""
        try:
            session.start()
        except STARTUP_ERRORS as e:
            logger.warning("%s: startup failed: %s", session.host, e)
            self._emit_error(session.host, f"ERROR: {_describe(e)}")
            return False
        except Exception as e:
            logger.exception("%s: unexpected startup error", session.host)
            self._emit_error(session.host, f"ERROR: {_describe(e)}")
            return False
        return session.is_busy()

    def _drive(self, active: list[RemoteSession]) -> None:
        """Advance all active sessions until none remain busy."""
        interval = self.settings.poll_interval
        with selectors.DefaultSelector() as selector:
            for session in active:
                selector.register(session, selectors.EVENT_READ)

            while active:
                selector.select(interval)
                for session in active:
                    try:
                        session.advance()
                    except Exception as e:
                        logger.exception("%s: error while reading channel", session.host)
                        session.handle(ChannelEvent(EventKind.CLOSED, error=str(e)))

                busy = []
                for session in active:
                    if session.is_busy():
                        busy.append(session)
                    else:
                        selector.unregister(session)
                active = busy
                logger.debug("%d sessions still active", len(active))


def _describe(error: BaseException) -> str:
    """Human readable message for a startup error."""
    return str(error) or type(error).__name__
