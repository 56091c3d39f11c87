"""Host alias directory parsed from an ssh_config style file."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

_COMMENT_RE = re.compile(r"(?<!\\)#.*$")


class ParserState(Enum):
    """State of the Host/User pairing parser."""

    BETWEEN_ALIASES = "between_aliases"
    IN_ALIAS = "in_alias"


@dataclass
class _Parser:
    """Pairs each ``Host`` line with the ``User`` line that follows it."""

    state: ParserState = ParserState.BETWEEN_ALIASES
    alias: str | None = None

    def feed(self, line: str, users: dict[str, str]) -> None:
        line = _COMMENT_RE.sub("", line.strip()).strip()
        parts = line.split(None, 1)
        if len(parts) != 2:
            return
        key, value = parts[0], parts[1].strip()
        if not value:
            return

        if key == "Host":
            # An unassigned scope is discarded; the directory is untouched
            self.state = ParserState.IN_ALIAS
            self.alias = value
        elif key == "User" and self.state is ParserState.IN_ALIAS:
            users[self.alias] = value
            self.state = ParserState.BETWEEN_ALIASES
            self.alias = None


class HostDirectory:
    """Read-only mapping of host alias to login user.

    Aliases sharing a base name with an optional ``_`` and a single digit
    suffix (``web``, ``web1``, ``web_2``) form a group addressable by the
    base name.
    """

    def __init__(self, users: dict[str, str] | None = None):
        self._users = dict(users or {})

    @classmethod
    def parse(cls, lines: Iterable[str]) -> HostDirectory:
        """Build a directory from ssh_config formatted lines."""
        users: dict[str, str] = {}
        parser = _Parser()
        for line in lines:
            parser.feed(line, users)
        return cls(users)

    @classmethod
    def load(cls, path: str | Path) -> HostDirectory:
        """Load a directory from a file, empty if it cannot be read."""
        path = Path(path).expanduser()
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                directory = cls.parse(f)
        except OSError as e:
            logger.debug("No host directory loaded from %s: %s", path, e)
            return cls()
        logger.debug("Loaded %d host aliases from %s", len(directory), path)
        return directory

    def resolve(self, identifier: str) -> list[str]:
        """Expand an identifier into the aliases of its host group.

        Falls back to the identifier itself when nothing matches, so an
        unknown name is used as a literal hostname.
        """
        pattern = re.compile(re.escape(identifier) + r"(?:_?[0-9])?")
        matches = [alias for alias in self._users if pattern.fullmatch(alias)]
        return matches or [identifier]

    def user_for(self, alias: str) -> str | None:
        return self._users.get(alias)

    def __contains__(self, alias: object) -> bool:
        return alias in self._users

    def __iter__(self) -> Iterator[str]:
        return iter(self._users)

    def __len__(self) -> int:
        return len(self._users)

    def items(self) -> list[tuple[str, str]]:
        return list(self._users.items())
