"""Base connectivity strategy.

A strategy decides how the service of a machine is exposed. It takes part
in two moments of the machine life:

- On creation, it appends its setup commands to the cloud-init
  configuration (:py:meth:`Connectivity.install_via_cloud_init`).
- Once the service runs, it tells the address where the service can be
  reached (:py:meth:`Connectivity.retrieve_ollama_host`).
"""

from __future__ import annotations

import dataclasses
from abc import abstractmethod
from typing import TYPE_CHECKING, ClassVar

from omachine.cloudinit import Config
from omachine.utils.constants import OLLAMA_ENV_FILE_PATH

if TYPE_CHECKING:
    from omachine.machine import Machine
    from omachine.utils.config import Settings


@dataclasses.dataclass
class Options:
    """Connectivity requested by the operator.

    Resolution order: public, then tailscale if an auth key is present,
    then private.
    """

    public: bool = False
    tailscale_auth_key: str = ""


def env_command(value: str) -> list[str]:
    """Command writing ``OLLAMA_HOST=<value>`` to the service environment file"""
    return ["sh", "-c", f'echo "OLLAMA_HOST={value}" > {OLLAMA_ENV_FILE_PATH}']


class Connectivity:
    """Exposure strategy of the service of a machine"""

    name: ClassVar[str]
    """Stored in the machine record; selects the strategy afterwards"""

    @abstractmethod
    def install_via_cloud_init(self, config: Config) -> None:
        """Append the setup commands to *config*.

        Must be called once per configuration: the commands are appended
        on every call, without deduplication.
        """
        raise NotImplementedError

    @abstractmethod
    def retrieve_ollama_host(
        self, machine: Machine, settings: None | Settings = None
    ) -> str:
        """Return the host where the service of *machine* is reachable.

        Args:
            machine: A running machine, with its service started.
            settings: Used to reach the machine, when required.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
