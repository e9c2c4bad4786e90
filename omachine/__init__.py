"""Library entry point.

Contains logic that *must* be executed under any invocation method:

- Install the default user interface.
- Setup the exit procedure.

Nothing else is global: storage locations and credentials are passed
explicitly, see :py:class:`omachine.utils.config.Configuration`.
"""
from __future__ import annotations

import atexit
import threading

import omachine.locks
import omachine.utils
from omachine.utils import ui

omachine.utils.init_ui()

exit_procedure_called = False


def exit_procedure() -> None:
    """Close listeners and connections left open, and join the remaining
    threads before the interpreter exits."""
    global exit_procedure_called
    if exit_procedure_called:
        return
    exit_procedure_called = True

    for cb in omachine.locks.exit_callbacks:
        cb()

    for thread in threading.enumerate():
        if thread is threading.current_thread() or thread.daemon:
            continue
        ui.instance().debug(f"Joining {thread.name}")
        thread.join(timeout=10)
        if thread.is_alive():
            ui.instance().error(f"Thread {thread.name} still running")


atexit.register(exit_procedure)
