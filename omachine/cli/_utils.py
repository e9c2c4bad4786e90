"""Common utilities for the CLI interface.

The command line is the only place building process-wide objects: the
configuration read from the environment, the keyring backed credential
store and the background context.
"""

from __future__ import annotations

from omachine.context import Context
from omachine.credentials import CredentialStore
from omachine.machine import Machine, MachineStore
from omachine.utils.config import Configuration

_configuration: None | Configuration = None


def configuration() -> Configuration:
    """Return the configuration of the process, creating the folders once"""
    global _configuration
    if _configuration is None:
        _configuration = Configuration.from_env()
        _configuration.init()
    return _configuration


def credential_store() -> CredentialStore:
    return CredentialStore()


def context() -> Context:
    """Context of a command; cancelled by CTRL-C"""
    return Context.background()


def load(name: str) -> Machine:
    """Load a machine record by name.

    Raises:
        NotFound: If no machine uses *name*.
    """
    return MachineStore(configuration()).get_by_name(name)
