from __future__ import annotations
import threading
from datetime import datetime
from typing import List

_GLYPHS = {"info": "•", "ok": "✔", "warn": "⚠", "err": "✖"}


class RunLog:
    """Console run log: ``[HH:MM:SS] <glyph> message``.

    Lines are echoed with print (unless quiet) and kept so a caller can show or
    save the log of a run. Callable, so it can be passed wherever a
    ``log(line, level)`` function is expected.
    """

    def __init__(self, echo: bool = True):
        self.echo = echo
        self.lines: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, line: str, level: str = "info") -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        entry = f"[{ts}] {_GLYPHS.get(level, _GLYPHS['info'])} {line}"
        with self._lock:
            self.lines.append(entry)
        if self.echo:
            print(entry, flush=True)

    def text(self) -> str:
        with self._lock:
            return "\n".join(self.lines)
