"""Completely remove a machine, its key pair and its record"""

from __future__ import annotations

import argparse

from omachine.cli import _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.provisioner import Provisioner


def delete(name: str) -> None:
    """Delete the machine *name*.

    Raises:
        NotFound: If the machine, or the credentials it was created with,
            do not exist.
    """
    conf = _utils.configuration()
    provisioner = Provisioner.for_machine(
        name, configuration=conf, credential_store=_utils.credential_store()
    )
    provisioner.delete_machine(_utils.context(), name)


@cli_command("delete", aliases=["rm"], help="Delete a machine")
def register(parser: argparse.ArgumentParser) -> Handler:
    parser.add_argument("name", help="name of the machine")

    def adapter(args: argparse.Namespace) -> Return:
        delete(args.name)
        return Return(0)

    return adapter
