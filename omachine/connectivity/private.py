"""Service only reachable from the machine itself; use a tunnel"""

from __future__ import annotations

from typing import TYPE_CHECKING

from omachine.cloudinit import Config
from omachine.connectivity.base import Connectivity, env_command

if TYPE_CHECKING:
    from omachine.machine import Machine
    from omachine.utils.config import Settings

LOOPBACK = "localhost"


class PrivateConnectivity(Connectivity):
    name = "private"

    def install_via_cloud_init(self, config: Config) -> None:
        config.add_runcmd(env_command(LOOPBACK))

    def retrieve_ollama_host(
        self, machine: Machine, settings: None | Settings = None
    ) -> str:
        return LOOPBACK
