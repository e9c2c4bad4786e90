"""Create a machine running Ollama"""

from __future__ import annotations

import argparse
from typing import Dict, Optional

from omachine import connectivity
from omachine.cli import _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.machine import Machine
from omachine.provider.base import CreateMachineRequest
from omachine.provisioner import Provisioner


def parse_tags(values: Optional[list[str]]) -> Dict[str, str]:
    """Convert ``key=value`` strings into a dictionary.

    Raises:
        ValueError: If a value has no ``=``.
    """
    tags: Dict[str, str] = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid tag {value!r}, expected key=value")
        tags[key] = val
    return tags


def create(
    name: str,
    provider: str,
    credentials: str,
    *,
    instance_type: str = "",
    image: str = "",
    region: str = "",
    zone: str = "",
    tags: None | Dict[str, str] = None,
    public: bool = False,
    tailscale_auth_key: str = "",
) -> Machine:
    """Create a machine and wait until Ollama is reachable.

    Args:
        name: Name of the machine, unique among the stored machines.
        provider: Name of the cloud provider.
        credentials: Name of stored credentials for *provider*.
        public: Expose the service on the public address of the machine.
        tailscale_auth_key: Join the machine to a tailnet with this key.
            Ignored if *public* is set.

    Returns:
        The ready machine.
    """
    conf = _utils.configuration()
    region = region or conf.settings.default_region or ""
    provisioner = Provisioner.for_provider(
        provider,
        credentials,
        configuration=conf,
        credential_store=_utils.credential_store(),
        region=region or None,
    )
    request = CreateMachineRequest(
        name=name,
        instance_type=instance_type,
        image=image,
        region=region,
        zone=zone,
        tags=tags or {},
    )
    options = connectivity.Options(public=public, tailscale_auth_key=tailscale_auth_key)
    return provisioner.create_machine(_utils.context(), request, options)


@cli_command("create", help="Create a new machine running Ollama")
def register(parser: argparse.ArgumentParser) -> Handler:
    parser.add_argument("name", help="name of the new machine")
    parser.add_argument(
        "-p", "--provider", required=True, help="the cloud provider"
    )
    parser.add_argument(
        "-c",
        "--credentials",
        required=True,
        help="the cloud provider credentials to use",
    )
    parser.add_argument(
        "-t",
        "--instance-type",
        default="",
        help="the instance type (or flavor, depending on the cloud provider)",
    )
    parser.add_argument(
        "-i", "--image", default="", help="the image to use for the instance"
    )
    parser.add_argument(
        "-r",
        "--region",
        default="",
        help="the cloud provider region where the instance will be spawned",
    )
    parser.add_argument(
        "-z",
        "--zone",
        default="",
        help="the zone in the region where the instance will be spawned",
    )
    parser.add_argument(
        "--tag",
        action="append",
        metavar="KEY=VALUE",
        help="tag to attach to the instance. Can be supplied several times.",
    )
    parser.add_argument(
        "--public",
        action="store_true",
        help=(
            "expose Ollama publicly (not recommended); otherwise use the "
            "tunnel command or tailscale to reach it"
        ),
    )
    parser.add_argument(
        "--tailscale-auth-key",
        default="",
        help="the Tailscale authentication key to use for the instance",
    )

    def adapter(args: argparse.Namespace) -> Return:
        create(
            args.name,
            args.provider,
            args.credentials,
            instance_type=args.instance_type,
            image=args.image,
            region=args.region,
            zone=args.zone,
            tags=parse_tags(args.tag),
            public=args.public,
            tailscale_auth_key=args.tailscale_auth_key,
        )
        return Return(0)

    return adapter
