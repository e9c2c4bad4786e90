"""Print the shell commands pointing Ollama clients to a machine"""

from __future__ import annotations

import argparse
import os
import pathlib
import sys
from typing import Mapping, NamedTuple, Optional

from jinja2 import Environment, FileSystemLoader

from omachine.cli import _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.machine import Machine


class ShellFormat(NamedTuple):
    prefix: str
    delimiter: str
    suffix: str


SHELLS: dict[str, ShellFormat] = {
    "fish": ShellFormat("set -gx ", ' "', '";\n'),
    "powershell": ShellFormat("$Env:", ' = "', '"\n'),
    "cmd": ShellFormat("SET ", "=", "\n"),
    "tcsh": ShellFormat("setenv ", ' "', '";\n'),
    "emacs": ShellFormat('(setenv "', '" "', '")\n'),
}

POSIX = ShellFormat("export ", '="', '"\n')
"""Used for every shell not in :py:data:`SHELLS`"""


def detect_shell(environ: None | Mapping[str, str] = None) -> str:
    """Return the name of the shell of the user, from ``SHELL``.

    Returns an empty string if it cannot be determined.
    """
    environ = os.environ if environ is None else environ
    shell = environ.get("SHELL", "")
    if shell == "":
        return ""
    name = pathlib.PurePath(shell).name
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    if name == "pwsh":
        return "powershell"
    return name


def render(machine: Machine, shell: str) -> str:
    """Render the line setting ``OLLAMA_HOST`` to the machine service."""
    fmt = SHELLS.get(shell, POSIX)
    env = Environment(loader=FileSystemLoader(pathlib.Path(__file__).parent))
    return env.get_template("env.jinja").render(
        prefix=fmt.prefix,
        delimiter=fmt.delimiter,
        suffix=fmt.suffix,
        host=machine.service_address(),
    )


def env(name: str, shell: Optional[str] = None) -> str:
    """Print the environment of machine *name* for *shell*.

    Args:
        shell: Shell name, detected if not given.

    Raises:
        NotFound: If the machine does not exist.
    """
    machine = _utils.load(name)
    content = render(machine, shell if shell else detect_shell())
    sys.stdout.write(content)
    return content


@cli_command("env", help="Print the commands to set OLLAMA_HOST to a machine")
def register(parser: argparse.ArgumentParser) -> Handler:
    parser.add_argument("name", help="name of the machine")
    parser.add_argument(
        "--shell",
        choices=[*SHELLS, "bash", "sh", "zsh"],
        help="shell to print the commands for, detected from $SHELL if not given",
    )

    def adapter(args: argparse.Namespace) -> Return:
        env(args.name, args.shell)
        return Return(0)

    return adapter
