"""Manage the cloud provider credentials kept in the keyring"""

from __future__ import annotations

import argparse

from omachine.cli import _utils
from omachine.cli._register import Handler, Return, cli_command
from omachine.credentials import CredentialKey
from omachine.errors import AlreadyExists
from omachine.provider import registry
from omachine.utils import ui


def list_credentials() -> list[list[str]]:
    """Print the stored credentials as a table"""
    data = [[k.name, k.provider] for k in _utils.credential_store().list()]
    ui.instance().tabulate(data, headers=["NAME", "PROVIDER"])
    return data


def create_credentials(name: str, provider: str, args: argparse.Namespace) -> int:
    """Store new credentials for *provider*.

    Values come from the ``--<provider>-<value>`` options; missing
    secrets are asked on the terminal.

    Returns:
        ``0`` on success, ``1`` if credentials with the same name exist.

    Raises:
        UnknownProvider: If *provider* does not exist.
        InvalidCredentials: If a required value is still missing.
    """
    credentials = registry.get(provider).credentials()
    credentials.update(args)
    credentials.complete()
    credentials.validate()
    try:
        _utils.credential_store().save(CredentialKey(name, provider), credentials)
    except AlreadyExists:
        ui.instance().fatal(
            f"credential {name!r} already exists, remove it first to update it"
        )
        return 1
    ui.instance().notice("Cloud credentials created")
    return 0


def remove_credentials(name: str, provider: str) -> None:
    """Raises: NotFound: If the credentials do not exist."""
    _utils.credential_store().delete(CredentialKey(name, provider))
    ui.instance().notice("Cloud credentials removed")


@cli_command("credentials", help="Manage cloud provider credentials")
def register(parser: argparse.ArgumentParser) -> Handler:
    actions = parser.add_subparsers(metavar="action", dest="action")

    list_parser = actions.add_parser(
        "list", aliases=["ls"], help="List all cloud credentials"
    )

    def _list(args: argparse.Namespace) -> Return:
        list_credentials()
        return Return(0)

    list_parser.set_defaults(func=_list)

    create_parser = actions.add_parser("create", help="Create new cloud credentials")
    create_parser.add_argument("name", help="name of the credentials")
    create_parser.add_argument(
        "-p",
        "--provider",
        required=True,
        choices=registry.names(),
        help="the provider the credentials belong to",
    )
    for provider in registry.names():
        registry.get(provider).credentials().register_arguments(create_parser)

    def _create(args: argparse.Namespace) -> Return:
        return Return(create_credentials(args.name, args.provider, args))

    create_parser.set_defaults(func=_create)

    remove_parser = actions.add_parser(
        "remove", aliases=["rm"], help="Remove cloud credentials"
    )
    remove_parser.add_argument("name", help="name of the credentials")
    remove_parser.add_argument(
        "-p",
        "--provider",
        required=True,
        help="the provider the credentials belong to",
    )

    def _remove(args: argparse.Namespace) -> Return:
        remove_credentials(args.name, args.provider)
        return Return(0)

    remove_parser.set_defaults(func=_remove)

    def adapter(args: argparse.Namespace) -> Return:
        parser.print_help()
        return Return(1)

    return adapter
