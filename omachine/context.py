"""Cancellation and deadlines for long running operations.

Every provider call and every polling loop receives a :py:class:`Context`.
Waiting is done through :py:meth:`Context.sleep`, which returns early and
raises when the context is cancelled or its deadline passes. The default
context has no deadline, so loops block until the operator interrupts the
process.
"""
from __future__ import annotations

import time
from threading import Event
from typing import Optional

import omachine.locks
from omachine.errors import Cancelled, DeadlineExceeded


class Context:
    """Cancellation token with an optional deadline.

    Examples:

        Give up creating a machine after ten minutes::

            ctx = Context.background().with_timeout(600)
            provisioner.create_machine(ctx, request, options)
    """

    def __init__(
        self,
        cancel: None | Event = None,
        deadline: Optional[float] = None,
        parent: None | Context = None,
    ) -> None:
        """
        Args:
            cancel: Event which, once set, cancels the context.
            deadline: Absolute ``time.monotonic()`` value after which the
                context is expired.
            parent: Context whose cancellation propagates to this one.
        """
        self.cancel_event = cancel if cancel is not None else Event()
        self.deadline = deadline
        self.parent = parent

    @classmethod
    def background(cls) -> Context:
        """Context cancelled only by :py:func:`omachine.locks.signal_stop`"""
        return cls(cancel=omachine.locks.process_stop)

    def with_timeout(self, seconds: float) -> Context:
        """Return a child context expiring *seconds* from now."""
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return Context(deadline=deadline, parent=self)

    def cancel(self) -> None:
        self.cancel_event.set()

    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.parent is not None and self.parent.cancelled()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, ``None`` if there is none"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the context can no longer be used.

        Raises:
            Cancelled: If the context, or one of its parents, was cancelled.
            DeadlineExceeded: If the deadline passed.
        """
        if self.cancelled():
            raise Cancelled
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded

    def sleep(self, seconds: float) -> None:
        """Sleep *seconds*, waking up early on cancellation.

        Raises:
            Cancelled: If the context is cancelled before or during the wait.
            DeadlineExceeded: If the deadline is reached before *seconds*.
        """
        self.check()
        end = time.monotonic() + seconds
        while True:
            now = time.monotonic()
            if now >= end:
                break
            wait = end - now
            remaining = self.remaining()
            if remaining is not None and remaining < wait:
                self.cancel_event.wait(remaining)
                self.check()
                raise DeadlineExceeded
            # NOTE: Parents are not woken up by our own event; re-check
            # periodically so a cancelled parent ends the wait too.
            self.cancel_event.wait(min(wait, 0.5))
            self.check()
