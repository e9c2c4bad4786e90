"""Operator facing output.

Everything the library wants the operator to see goes through the object
returned by :py:func:`instance`. Lifecycle operations can block for minutes
while a machine boots; sections and iterations keep those waits readable.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, Protocol, Sequence, TypeVar

from typing_extensions import ContextManager, Literal

DEBUG: Literal[0] = 0
INFO: Literal[1] = 1
NOTICE: Literal[2] = 2
WARNING: Literal[3] = 3
ERROR: Literal[4] = 4
FATAL: Literal[5] = 5

LEVEL_LITERAL = Literal[0, 1, 2, 3, 4, 5]

LEVEL_STRING = dict(enumerate(["DEBUG", "INFO", "NOTICE", "WARNING", "ERROR", "FATAL"]))

T = TypeVar("T")


class UI(Protocol):
    """Sink for progress, diagnostics and tables"""

    level: int
    """Messages below this level are discarded"""

    verbose: bool
    """Set by ``-v``; forwarded to external tools such as ``ssh -v``"""

    def message(self, level: LEVEL_LITERAL, *values: str | Any) -> None:
        ...

    def debug(self, *values: str | Any) -> None:
        self.message(DEBUG, *values)

    def info(self, *values: str | Any) -> None:
        self.message(INFO, *values)

    def notice(self, *values: str | Any) -> None:
        """Shown by default; used for phase transitions and results."""
        self.message(NOTICE, *values)

    def warning(self, *values: str | Any) -> None:
        self.message(WARNING, *values)

    def error(self, *values: str | Any) -> None:
        self.message(ERROR, *values)

    def fatal(self, *values: str | Any) -> None:
        """Report the error that ends the command."""
        self.message(FATAL, *values)

    def section(self, title: str) -> ContextManager:
        """Group the messages of one lifecycle operation under *title*.

        Example::

            with ui.instance().section("Creating machine demo"):
                ...
        """
        ...

    def iterate(self, iterable: Iterable[T], fmt: Callable[[T], str] = str) -> Iterator[T]:
        """Yield from *iterable*, announcing each element as ``[i/n] fmt(element)``.

        Used for the creation and deletion steps, whose count is known up
        front.
        """
        ...

    def tabulate(
        self,
        data: Sequence[Sequence[Any]],
        headers: None | Sequence[str] = None,
    ) -> None:
        """Print *data* (a list of rows) as a plain table on standard output."""
        ...


_ui: UI


def instance(new: None | UI = None) -> UI:
    """Return the active UI, replacing it first if *new* is given"""
    global _ui
    if new is not None:
        _ui = new
    return _ui
