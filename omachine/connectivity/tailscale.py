"""Service bound to the tailscale address of the machine"""

from __future__ import annotations

from typing import TYPE_CHECKING

from omachine.cloudinit import Config
from omachine.connectivity.base import Connectivity, env_command
from omachine.utils import ui
from omachine.utils.constants import TAILSCALE_INSTALL_SCRIPT

if TYPE_CHECKING:
    from omachine.machine import Machine
    from omachine.utils.config import Settings

SYSCTL_FILE = "/etc/sysctl.d/99-tailscale.conf"

IP_COMMAND = "tailscale ip -4"


class TailscaleConnectivity(Connectivity):
    """Join the machine to a tailnet with an auth key.

    The service address is only known once the machine joined the
    network, so retrieving it needs an SSH round trip. Connection errors
    are raised as is; retrying is up to the caller.
    """

    name = "tailscale"

    def __init__(self, auth_key: str = "") -> None:
        self.auth_key = auth_key

    def install_via_cloud_init(self, config: Config) -> None:
        config.add_runcmd(["sh", "-c", f"curl -fsSL {TAILSCALE_INSTALL_SCRIPT} | sh"])
        config.add_runcmd(
            [
                "sh",
                "-c",
                f"echo 'net.ipv4.ip_forward = 1' | sudo tee -a {SYSCTL_FILE} && "
                f"echo 'net.ipv6.conf.all.forwarding = 1' | sudo tee -a {SYSCTL_FILE} && "
                f"sudo sysctl -p {SYSCTL_FILE}",
            ]
        )
        config.add_runcmd(["sh", "-c", f"tailscale up --auth-key={self.auth_key}"])
        config.add_runcmd(env_command("$(tailscale ip -4)"))

    def retrieve_ollama_host(
        self, machine: Machine, settings: None | Settings = None
    ) -> str:
        ui.instance().info(f"Asking {machine.name} for its tailscale address")
        output = machine.ssh_client(settings).run(IP_COMMAND, check=True)
        return output.text()
