"""Forward a local port to the Ollama service of a private machine"""

from __future__ import annotations

import argparse
from typing import Optional

from omachine.cli import _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.tunnel import Tunnel


def tunnel(name: str, local_port: Optional[int] = None, bind: Optional[str] = None) -> None:
    """Forward connections until the user presses CTRL-C.

    Raises:
        NotFound: If the machine does not exist.
        TunnelUnsupported: If the machine is not private.
    """
    conf = _utils.configuration()
    machine = _utils.load(name)
    Tunnel(machine, local_port, bind, settings=conf.settings).serve_forever(
        _utils.context()
    )


@cli_command(
    "tunnel",
    help="Create an SSH tunnel to the Ollama service of a private machine",
)
def register(parser: argparse.ArgumentParser) -> Handler:
    parser.add_argument("name", help="name of the machine")
    parser.add_argument(
        "-l",
        "--local-port",
        type=int,
        help="local port to listen on; defaults to the Ollama port",
    )
    parser.add_argument(
        "--bind", help="local address to listen on; defaults to the loopback"
    )

    def adapter(args: argparse.Namespace) -> Return:
        tunnel(args.name, args.local_port, args.bind)
        return Return(0)

    return adapter
