"""List machines
"""

from __future__ import annotations

import argparse

from omachine.cli import _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.machine import MachineStore
from omachine.utils import ui

HEADER = ["NAME", "STATE", "PROVIDER", "REGION", "IP", "OLLAMA HOST", "OLLAMA PORT"]


def list_machines() -> list[list[str]]:
    """Print the stored machines as a table.

    Returns:
        The generated data, in the form of a matrix. *Without* the header.
    """
    data: list[list[str]] = []
    for m in MachineStore(_utils.configuration()).list():
        data.append(
            [
                m.name,
                m.state,
                m.provider_name,
                m.region,
                m.ip,
                m.service_host,
                str(m.service_port) if m.service_port else "",
            ]
        )
    ui.instance().tabulate(data, headers=HEADER)
    return data


@cli_command("ls", aliases=["list"], help="List all machines")
def register(parser: argparse.ArgumentParser) -> Handler:
    def adapter(args: argparse.Namespace) -> Return:
        list_machines()
        return Return(0)

    return adapter
