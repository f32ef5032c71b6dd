"""User-facing notices for guestplay.

Notifiers receive human-readable progress notices, warnings and the raw
output streamed back from ansible on the guest. They are purely
observational: nothing a notifier does affects the provisioning run.
"""

import json
import sys
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.text import Text

from .transport import OutputSink


class Notifier(ABC):
    """Base class for notification sinks."""

    @abstractmethod
    def info(self, message: str) -> None:
        """Progress notice."""

    @abstractmethod
    def detail(self, message: str) -> None:
        """Secondary notice, shown indented under the last one."""

    @abstractmethod
    def warn(self, message: str) -> None:
        """Non-fatal warning."""

    @abstractmethod
    def output(self, stream: str, data: str) -> None:
        """A line of remote command output."""

    def sink(self) -> OutputSink:
        """Output sink forwarding remote output to this notifier."""
        return self.output


class TextNotifier(Notifier):
    """Writes notices to a rich console, prefixed with the guest name."""

    def __init__(self, guest: str = "", console: Console | None = None) -> None:
        """Initialize text notifier.

        Args:
            guest: Guest name used as line prefix
            console: Rich Console to use (stderr console if None)
        """
        self.guest = guest
        self.console = console or Console(stderr=True)

    def _prefix(self) -> str:
        return f"{self.guest}: " if self.guest else ""

    def info(self, message: str) -> None:
        self.console.print(
            Text(f"==> {self._prefix()}{message}", style="bold"), highlight=False
        )

    def detail(self, message: str) -> None:
        self.console.print(Text(f"    {self._prefix()}{message}"), highlight=False)

    def warn(self, message: str) -> None:
        self.console.print(
            Text(f"==> {self._prefix()}{message}", style="yellow"), highlight=False
        )

    def output(self, stream: str, data: str) -> None:
        # ansible output carries ANSI colors (ANSIBLE_FORCE_COLOR)
        self.console.print(Text.from_ansi(data.rstrip("\r\n")), highlight=False)


class JsonNotifier(Notifier):
    """Writes notices as NDJSON (newline-delimited JSON) events."""

    def __init__(self, guest: str = "", output: Any = None) -> None:
        """Initialize JSON notifier.

        Args:
            guest: Guest name added to every event
            output: Output stream (defaults to sys.stderr to not pollute stdout)
        """
        self.guest = guest
        self.stream = output or sys.stderr

    def _emit(self, event: str, **details: Any) -> None:
        record = {
            "event": event,
            "guest": self.guest,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **details,
        }
        print(json.dumps(record), file=self.stream, flush=True)

    def info(self, message: str) -> None:
        self._emit("info", msg=message)

    def detail(self, message: str) -> None:
        self._emit("detail", msg=message)

    def warn(self, message: str) -> None:
        self._emit("warning", msg=message)

    def output(self, stream: str, data: str) -> None:
        self._emit("output", stream=stream, data=data)


class NullNotifier(Notifier):
    """Discards all notices."""

    def info(self, message: str) -> None:
        pass

    def detail(self, message: str) -> None:
        pass

    def warn(self, message: str) -> None:
        pass

    def output(self, stream: str, data: str) -> None:
        pass


def create_notifier(
    enabled: bool = True,
    json_format: bool = False,
    guest: str = "",
    output: Any = None,
) -> Notifier:
    """Create a notifier.

    Args:
        enabled: Whether notices are shown at all
        json_format: Use NDJSON events instead of console text
        guest: Guest name attached to notices
        output: Output stream for JSON events (defaults to sys.stderr)
    """
    if not enabled:
        return NullNotifier()

    if json_format:
        return JsonNotifier(guest=guest, output=output)
    return TextNotifier(guest=guest, console=Console(file=output) if output else None)
