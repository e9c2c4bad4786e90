"""Service bound to every interface, reachable on the machine public IP.

Warning: the service has no authentication; anyone knowing the address
can use it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from omachine.cloudinit import Config
from omachine.connectivity.base import Connectivity, env_command

if TYPE_CHECKING:
    from omachine.machine import Machine
    from omachine.utils.config import Settings


class PublicConnectivity(Connectivity):
    name = "public"

    def install_via_cloud_init(self, config: Config) -> None:
        config.add_runcmd(env_command("0.0.0.0"))

    def retrieve_ollama_host(
        self, machine: Machine, settings: None | Settings = None
    ) -> str:
        return machine.ip
