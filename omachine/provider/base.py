"""Base provider, for API reference and help.

A *provider* is a cloud (or fake cloud) able to run machines. It exposes
two objects: the :py:class:`Credentials` of an account, and a
:py:class:`MachineManager` bound to that account and a region, which
performs the instance lifecycle operations.
"""

from __future__ import annotations

import argparse
import dataclasses
import getpass
from abc import abstractmethod
from typing import Any, ClassVar, Dict, Optional

from pydantic import BaseModel

from omachine.context import Context
from omachine.errors import CredentialsNotSet, InvalidCredentials
from omachine.utils.constants import MACHINE_KIND_LITERAL, MACHINE_STATE_LITERAL


def credential_field(
    json: str, help: str, *, required: bool = True, secret: bool = False
) -> Any:
    """Declare a credential value.

    Args:
        json: Key used when the credentials are serialized.
        help: Help text of the command line option.
        required: If set to ``True``, :py:meth:`Credentials.validate` fails
            when the value is empty.
        secret: If set to ``True``, :py:meth:`Credentials.complete` asks for
            the value on the terminal when it was not given.
    """
    return dataclasses.field(
        default="",
        metadata={"json": json, "help": help, "required": required, "secret": secret},
    )


@dataclasses.dataclass
class Credentials:
    """Credentials of a provider account.

    Subclasses declare their values as dataclass fields built with
    :py:func:`credential_field`; serialization, command line registration
    and validation of required values are derived from them.
    """

    provider: ClassVar[str] = ""
    """Name of the provider owning these credentials"""

    def _fields(self):
        return dataclasses.fields(self)

    def dict(self) -> Dict[str, str]:
        """Serialize the object into a JSON friendly dictionary."""
        return {f.metadata["json"]: getattr(self, f.name) for f in self._fields()}

    def load(self, data: Dict[str, Any]) -> None:
        """Fill the values from a dictionary generated by :py:meth:`dict`.

        Unknown keys are ignored; missing keys leave the value untouched.
        """
        for f in self._fields():
            key = f.metadata["json"]
            if key in data and data[key] is not None:
                setattr(self, f.name, str(data[key]))

    def option(self, name: str) -> str:
        return f"--{self.provider}-{name.replace('_', '-')}"

    def register_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Add one ``--<provider>-<value>`` option per credential value."""
        group = parser.add_argument_group(f"{self.provider} credentials")
        for f in self._fields():
            group.add_argument(
                self.option(f.name),
                dest=f"{self.provider}_{f.name}",
                default=None,
                help=f.metadata["help"],
            )

    def update(self, args: argparse.Namespace) -> None:
        """Copy the values given on the command line."""
        for f in self._fields():
            value = getattr(args, f"{self.provider}_{f.name}", None)
            if value is not None:
                setattr(self, f.name, value)

    def empty(self) -> bool:
        """Return ``True`` if no value was ever supplied"""
        return all(getattr(self, f.name) == "" for f in self._fields())

    def complete(self) -> None:
        """Interactively ask for missing secret values.

        The values are read from the terminal without echo.
        """
        for f in self._fields():
            if f.metadata["secret"] and getattr(self, f.name) == "":
                setattr(self, f.name, getpass.getpass(f"{f.metadata['help']}: "))

    def validate(self) -> None:
        """Check every required value is present.

        Raises:
            InvalidCredentials: Naming the missing values.
        """
        missing = [
            f.metadata["json"]
            for f in self._fields()
            if f.metadata["required"] and getattr(self, f.name) == ""
        ]
        if missing:
            raise InvalidCredentials(*missing)


class ProviderMachine(BaseModel):
    """Machine as reported by a provider"""

    id: str
    name: str = ""
    ip: str = ""
    region: str = ""
    state: MACHINE_STATE_LITERAL = "pending"


@dataclasses.dataclass
class CreateMachineRequest:
    """What the operator asks for when creating a machine"""

    name: str
    instance_type: str = ""
    image: str = ""
    region: str = ""
    zone: str = ""
    tags: Dict[str, str] = dataclasses.field(default_factory=dict)
    user_data: bytes = b""
    """Rendered cloud-init, set by the provisioner for ``vm`` providers.

    Providers must pass it along as is.
    """


class MachineManager:
    """Instance lifecycle operations, bound to an account and a region.

    Every operation receives a :py:class:`Context`; implementations should
    call :py:meth:`Context.check` before talking to the provider and use
    :py:meth:`Context.remaining` to bound their own waits.
    """

    @abstractmethod
    def machine_kind(self) -> MACHINE_KIND_LITERAL:
        """Return ``"vm"`` if the instances boot with cloud-init.

        ``"container"`` providers receive no user data.
        """
        raise NotImplementedError

    @abstractmethod
    def create(self, ctx: Context, request: CreateMachineRequest) -> ProviderMachine:
        """Create a new instance.

        The provider creates, and owns, any auxiliary resource required by
        the instance (such as firewall rules); they are removed by
        :py:meth:`delete`.

        Args:
            ctx: The operation context.
            request: The instance to create.

        Returns:
            The new machine, with the identifier assigned by the provider.

        Raises:
            BackendError: If the provider fails to create the instance.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, ctx: Context, id: str) -> None:
        """Delete the instance and the auxiliary resources created with it.

        The operation is idempotent: deleting an instance that does not
        exist returns without error.

        Raises:
            BackendError: If the instance cannot be deleted.
        """
        raise NotImplementedError

    @abstractmethod
    def start(self, ctx: Context, id: str) -> None:
        """Request a stopped instance to start. Does not wait."""
        raise NotImplementedError

    @abstractmethod
    def stop(self, ctx: Context, id: str) -> None:
        """Request an instance to stop. Does not wait.

        Once stopped, the instance must only incur storage costs.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, ctx: Context, id: str) -> ProviderMachine:
        """Retrieve the current state of the instance.

        Native states are mapped to :py:data:`MACHINE_STATE_LITERAL`;
        states without a mapping are reported as ``pending``.

        Raises:
            NotFound: If the instance does not exist.
            BackendError: If the provider fails to answer.
        """
        raise NotImplementedError


class Provider:
    """A cloud provider"""

    name: ClassVar[str]
    """Name used to select the provider, and stored in the machine record"""

    credentials_class: ClassVar[type[Credentials]]

    def __init__(self) -> None:
        self._credentials = self.credentials_class()

    def credentials(self) -> Credentials:
        """Return the credentials used by this provider.

        The object is mutable: fill it (from the credential store, the
        command line or interactively) before asking for a machine manager.
        """
        return self._credentials

    def machine_manager(self, region: Optional[str] = None) -> MachineManager:
        """Return a manager bound to the credentials and *region*.

        Raises:
            CredentialsNotSet: If the credentials are empty.
            InvalidCredentials: If a required value is missing.
        """
        if self._credentials.empty():
            raise CredentialsNotSet(self.name)
        self._credentials.validate()
        return self._machine_manager(region)

    @abstractmethod
    def _machine_manager(self, region: Optional[str]) -> MachineManager:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
