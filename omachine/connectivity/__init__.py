"""Connectivity strategies: how the service of a machine is exposed"""

from __future__ import annotations

from omachine.connectivity.base import Connectivity, Options
from omachine.connectivity.private import PrivateConnectivity
from omachine.connectivity.public import PublicConnectivity
from omachine.connectivity.tailscale import TailscaleConnectivity
from omachine.errors import UnknownConnectivity


def get_provider(options: Options) -> Connectivity:
    """Select the strategy matching the operator options."""
    if options.public:
        return PublicConnectivity()
    if options.tailscale_auth_key:
        return TailscaleConnectivity(options.tailscale_auth_key)
    return PrivateConnectivity()


def get_provider_by_name(name: str) -> Connectivity:
    """Return the strategy stored in a machine record.

    An empty name means private.

    Raises:
        UnknownConnectivity: If *name* is not a known strategy.
    """
    if name in ("", PrivateConnectivity.name):
        return PrivateConnectivity()
    if name == PublicConnectivity.name:
        return PublicConnectivity()
    if name == TailscaleConnectivity.name:
        return TailscaleConnectivity()
    raise UnknownConnectivity(name)
