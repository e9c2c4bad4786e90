"""Shared parser and the registry of sub-commands"""
from __future__ import annotations

import argparse
import dataclasses
from typing import Callable


@dataclasses.dataclass
class Return:
    """Exit status of a command"""

    returncode: int


Handler = Callable[[argparse.Namespace], Return]
Registrar = Callable[[argparse.ArgumentParser], Handler]

parser = argparse.ArgumentParser(
    "ollama-machine",
    description="Create, manage and reach cloud machines running Ollama",
    formatter_class=argparse.ArgumentDefaultsHelpFormatter,
)
parser.add_argument(
    "-v",
    "--verbose",
    action="count",
    default=0,
    help="show more progress messages; repeat for debug output",
)
parser.add_argument("--version", action="store_true", help="print the version and exit")
subparsers = parser.add_subparsers(metavar="command", dest="subcommand")

callbacks: dict[str, Handler] = {}
"""Handler of every command, keyed by command name and by alias"""


def cli_command(name: str, **kwargs) -> Callable[[Registrar], None]:
    """Register the sub-command *name*.

    *kwargs* go to ``add_parser`` (``help``, ``aliases``, ...). The
    decorated function receives the new sub-parser, adds its arguments and
    returns the handler called with the parsed namespace.
    """

    def _register(func: Registrar) -> None:
        handler = func(subparsers.add_parser(name, **kwargs))
        callbacks[name] = handler
        for alias in kwargs.get("aliases", ()):
            callbacks[alias] = handler

    return _register
