"""Timestamped line output"""

from __future__ import annotations

import re
import sys
import warnings
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, Sequence, TextIO, Type

import tabulate

from omachine.utils import ui
from omachine.utils.ui import T


class LogUI(ui.UI):
    """One timestamped line per message, without colors.

    Messages go to *stream* (``stderr`` when not given) so commands that
    print data, such as ``env`` or ``ls``, keep a clean ``stdout``.
    Nested sections indent their messages.
    """

    def __init__(self, level: int, stream: None | TextIO = None) -> None:
        self.level = level
        self.verbose = False
        self.stream = stream
        self.sections: list[str] = []
        warnings.showwarning = self.showwarning

    def _write(self, text: str, level: None | ui.LEVEL_LITERAL = None) -> None:
        stamp = datetime.now().isoformat(timespec="seconds")
        tag = "" if level is None else f" {ui.LEVEL_STRING[level]:<7}"
        indent = "  " * len(self.sections)
        stream = self.stream if self.stream is not None else sys.stderr
        stream.write(f"{stamp}{tag} {indent}{text}\n")
        stream.flush()

    def message(self, level: ui.LEVEL_LITERAL, *values: str | Any) -> None:
        if level < self.level:
            return
        self._write(" ".join(str(v) for v in values), level)

    def iterate(self, iterable: Iterable[T], fmt: Callable[[T], str] = str) -> Iterator[T]:
        elements = list(iterable)
        total = len(elements)
        for index, elem in enumerate(elements, start=1):
            if self.level <= ui.NOTICE:
                self._write(f"[{index}/{total}] {fmt(elem)}")
            yield elem

    @contextmanager
    def section(self, title: str) -> Iterator[None]:
        if self.level <= ui.NOTICE:
            self._write(title)
        self.sections.append(title)
        try:
            yield
        finally:
            self.sections.pop()

    def tabulate(
        self, data: Sequence[Sequence[Any]], headers: None | Sequence[str] = None
    ) -> None:
        kwargs: dict[str, Any] = {"tablefmt": "plain", "disable_numparse": True}
        if headers is not None:
            kwargs["headers"] = [h.upper() for h in headers]
        print(tabulate.tabulate(data, **kwargs))

    def showwarning(
        self,
        message: Warning | str,
        category: Type[Warning],
        filename: str,
        lineno: int,
        file: TextIO | None = None,
        line: str | None = None,
    ) -> None:
        location = re.sub(r".*(omachine[/\\].*)", r"\1", filename)
        self.warning(f"{message} ({location}:{lineno})")
