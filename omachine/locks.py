"""Process-wide stop signalling.

Only the command line installs signal handlers. Library callers stop
long running operations by cancelling their own
:py:class:`omachine.context.Context`.
"""
from __future__ import annotations

import signal
from threading import Event
from typing import Callable

process_stop = Event()
"""Set once the operator asked the process to stop.

:py:meth:`omachine.context.Context.background` contexts report themselves
cancelled while this is set, which ends the polling loops.
"""

exit_callbacks: list[Callable[[], None]] = []
"""Cleanup run by :py:func:`omachine.exit_procedure`, such as closing tunnels"""


def signal_stop(signum=None, frame=None) -> None:
    """Set :py:attr:`process_stop`, ending every background context"""
    process_stop.set()


def install_signal_handlers() -> None:
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, signal_stop)
