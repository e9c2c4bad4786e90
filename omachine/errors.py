"""Exceptions raised by ollama-machine.

Every layer re-raises with ``raise ... from exce``, so the command line can
print the message of the last one and the debug log keeps the full chain.
"""

from __future__ import annotations

from typing import Generic, Protocol, TypeVar


class ConfigurationError(Exception):
    """The operator supplied configuration cannot be used.

    Surfaced immediately, never retried.
    """


class CredentialsNotSet(ConfigurationError):
    """A provider was asked for a machine manager before loading credentials"""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Credentials not set for provider {provider}")


class InvalidCredentials(ConfigurationError):
    """Raised by `Credentials.validate` when a required value is missing"""

    def __init__(self, *missing: str) -> None:
        self.missing = list(missing)
        """Names of the offending credential fields"""
        super().__init__(f"{', '.join(missing)} is required")


class UnknownProvider(ConfigurationError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"provider {name!r} not found")


class UnknownConnectivity(ConfigurationError):
    """A stored connectivity name has no strategy"""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"connectivity {name!r} not found")


class TunnelUnsupported(ConfigurationError):
    """Tunnels only reach machines with private connectivity"""

    def __init__(self, machine: str, connectivity: str) -> None:
        self.machine = machine
        self.connectivity = connectivity
        super().__init__(
            "tunneling is only available for machine with private connectivity; "
            f"{machine} uses {connectivity}"
        )


T = TypeVar("T")


class NotFound(Exception, Generic[T]):
    """Lookup of a machine, credential or provider resource failed.

    Backends raise it for absent instances; ``delete`` turns it into a
    success.
    """

    def __init__(self, search: None | T = None) -> None:
        self.search = search
        """What was looked up, if known"""
        if search is None:
            super().__init__()
        else:
            super().__init__(f"{search} not found.")


class AlreadyExists(Exception, Generic[T]):
    """A store already holds *key*"""

    def __init__(self, key: T) -> None:
        self.key = key
        super().__init__(f"{key} already exists.")


class BackendError(Exception):
    """A cloud provider call failed"""


class MachineErrored(BackendError):
    """The provider reported the instance in error state."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"machine {instance_id} is in error state")


class SSHError(Exception):
    """The remote shell transport failed.

    A refused connection is reported as ``ConnectionRefusedError`` instead,
    since the orchestrator retries it while a machine boots.
    """


class CommandReturn(Protocol):
    """What `CommandFailed` reads from a finished process"""

    cmd: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes


class CommandFailed(Exception):
    """A local or remote command exited with a non-zero status"""

    def __init__(self, ret: CommandReturn) -> None:
        self.ret = ret
        self.returncode = ret.returncode
        out = ret.stdout.decode("utf8", errors="replace")
        err = ret.stderr.decode("utf8", errors="replace")
        super().__init__(
            f"{' '.join(map(str, ret.cmd))} exited with status {ret.returncode}\n"
            f"stdout: {out}\n"
            f"stderr: {err}"
        )


class Cancelled(Exception):
    """The operation context was cancelled while waiting"""

    def __init__(self, msg: None | str = None) -> None:
        super().__init__(msg or "operation cancelled")


class DeadlineExceeded(Cancelled):
    """The operation context deadline passed while waiting"""

    def __init__(self, msg: None | str = None) -> None:
        super().__init__(msg or "deadline exceeded")


class Bug(Exception):
    """Steps were run out of order, or some other internal inconsistency"""
