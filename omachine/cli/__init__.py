"""Command line entry point of ``ollama-machine``"""

from __future__ import annotations

import argparse
import pprint
import sys
import traceback
from typing import Any, Callable, NoReturn, Sequence

from typing_extensions import get_args

import omachine
import omachine.cli._create
import omachine.cli._credentials
import omachine.cli._delete
import omachine.cli._env
import omachine.cli._list
import omachine.cli._power
import omachine.cli._tunnel
import omachine.locks
import omachine.utils
from omachine.cli import _register, _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.cli._version import print_version, version
from omachine.utils import ui
from omachine.utils.config import Configuration

parser = _register.parser


@cli_command("init-conf", help="create the storage folders")
def _init_conf(parser: argparse.ArgumentParser) -> Handler:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="only print the folders that would be created",
    )

    def adapter(args: argparse.Namespace) -> Return:
        Configuration.from_env().init(dry_run=args.dry_run)
        return Return(0)

    return adapter


@cli_command("version", help="print the version of every component")
def _version(parser: argparse.ArgumentParser) -> Handler:
    def adapter(args: argparse.Namespace) -> Return:
        print_version()
        return Return(0)

    return adapter


@cli_command("dump-config", help="print the storage location and the settings in use")
def _dump_config(parser: argparse.ArgumentParser) -> Handler:
    def adapter(args: argparse.Namespace) -> Return:
        conf = _utils.configuration()
        print(conf)
        pprint.pprint(conf.settings.model_dump(), width=60)
        return Return(0)

    return adapter


def _exit(ret: Any) -> NoReturn:
    if isinstance(ret, Return):
        sys.exit(ret.returncode)
    sys.exit(ret if isinstance(ret, int) else 0)


def run(args: Sequence[str] | None = None) -> NoReturn:
    """Parse *args* (``sys.argv`` by default) and run the selected command.

    Any exception escaping the command is reported through the UI and ends
    the process with status 1; no command at all exits with 127.
    """
    arguments = parser.parse_args(args=args)
    verbosity = min(arguments.verbose, ui.NOTICE)
    omachine.utils.init_ui(get_args(ui.LEVEL_LITERAL)[ui.NOTICE - verbosity], verbosity > 0)

    if arguments.version:
        print(f"ollama-machine {version()['ollama-machine']['version']}")
        sys.exit(0)

    handler: None | Callable[[argparse.Namespace], Any]
    handler = getattr(arguments, "func", None) or _register.callbacks.get(arguments.subcommand)
    if handler is None:
        parser.print_help()
        sys.exit(127)

    omachine.locks.install_signal_handlers()
    try:
        ret = handler(arguments)
    except Exception as exce:
        ui.instance().debug(traceback.format_exc())
        ui.instance().fatal(str(exce) or exce.__class__.__name__)
        sys.exit(1)
    finally:
        omachine.exit_procedure()
    _exit(ret)
