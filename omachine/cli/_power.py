"""Start and stop existing machines"""

from __future__ import annotations

import argparse

from omachine.cli import _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.machine import Machine
from omachine.provisioner import Provisioner


def _provisioner(name: str) -> Provisioner:
    return Provisioner.for_machine(
        name,
        configuration=_utils.configuration(),
        credential_store=_utils.credential_store(),
    )


def start(name: str) -> Machine:
    """Start a stopped machine and wait until it runs"""
    return _provisioner(name).start_machine(_utils.context(), name)


def stop(name: str) -> Machine:
    """Stop a machine; only storage is billed while stopped"""
    return _provisioner(name).stop_machine(_utils.context(), name)


@cli_command("start", help="Start a stopped machine")
def register_start(parser: argparse.ArgumentParser) -> Handler:
    parser.add_argument("name", help="name of the machine")

    def adapter(args: argparse.Namespace) -> Return:
        start(args.name)
        return Return(0)

    return adapter


@cli_command("stop", help="Stop a running machine")
def register_stop(parser: argparse.ArgumentParser) -> Handler:
    parser.add_argument("name", help="name of the machine")

    def adapter(args: argparse.Namespace) -> Return:
        stop(args.name)
        return Return(0)

    return adapter
