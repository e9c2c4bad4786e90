"""Machine records and their local storage.

Each machine is stored as ``<machines_dir>/<id>.json``; names are unique
within a store.
"""

from __future__ import annotations

import ipaddress
import os
import pathlib
import warnings
from typing import Optional

from pydantic import ConfigDict, Field, ValidationError

from omachine.errors import AlreadyExists, NotFound
from omachine.provider.base import ProviderMachine
from omachine.ssh import KeyPairFiles, SSHClient
from omachine.utils import ui
from omachine.utils.config import Configuration, Settings
from omachine.utils.constants import CONNECTIVITY_LITERAL


class Machine(ProviderMachine):
    """A machine created by us, as stored on disk.

    Extends the provider view with everything required to reach the
    machine and its service.
    """

    model_config = ConfigDict(populate_by_name=True)

    provider_name: str = Field("", alias="providerName")
    credentials_name: str = Field("", alias="credentialsName")
    connectivity: CONNECTIVITY_LITERAL = ""
    """Connectivity strategy name; empty means private"""

    key_pair: Optional[KeyPairFiles] = Field(None, alias="keyPair")
    service_host: str = Field("", alias="serviceHost")
    service_port: int = Field(0, alias="servicePort")

    def update_from(self, reported: ProviderMachine) -> None:
        """Copy the values reported by the provider.

        The name is kept: it is chosen by the operator, not the provider.
        """
        self.ip = reported.ip or self.ip
        self.region = reported.region or self.region
        self.state = reported.state

    def service_address(self) -> str:
        """Return ``host:port`` of the service; IPv6 hosts are bracketed"""
        host = self.service_host
        try:
            if isinstance(ipaddress.ip_address(host), ipaddress.IPv6Address):
                host = f"[{host}]"
        except ValueError:
            pass
        return f"{host}:{self.service_port}"

    def ssh_client(self, settings: None | Settings = None) -> SSHClient:
        """Build a remote shell client for the machine.

        Raises:
            ValueError: If the machine has no key pair.
        """
        if self.key_pair is None:
            raise ValueError(f"Machine {self.name} has no key pair")
        settings = settings if settings is not None else Settings()
        return SSHClient(
            self.ip,
            settings.ssh_port,
            settings.ssh_user,
            self.key_pair.private_key_path,
            connect_timeout=settings.ssh_connect_timeout,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class MachineStore:
    """Machine records, one JSON file per machine"""

    def __init__(self, configuration: Configuration) -> None:
        self.directory: pathlib.Path = configuration.machines_dir

    def path(self, id: str) -> pathlib.Path:
        return self.directory / f"{id}.json"

    def save(self, machine: Machine) -> None:
        """Write the record, overwriting any previous record with the same id.

        Raises:
            ValueError: If the machine has no id.
            AlreadyExists: If another machine already uses the name.
        """
        if not machine.id:
            raise ValueError("Cannot save a machine without id")
        for other in self.list():
            if other.name == machine.name and other.id != machine.id:
                raise AlreadyExists(f"machine {machine.name}")

        target = self.path(machine.id)
        tmp = target.with_suffix(".json.tmp")
        tmp.write_text(machine.to_json() + "\n", encoding="utf8")
        os.replace(tmp, target)
        ui.instance().debug(f"Saved machine {machine.name} in {target}")

    def get(self, id: str) -> Machine:
        """Raises: NotFound: If there is no record for *id*."""
        try:
            data = self.path(id).read_text(encoding="utf8")
        except FileNotFoundError as exce:
            raise NotFound(f"machine {id}") from exce
        return Machine.model_validate_json(data)

    def get_by_name(self, name: str) -> Machine:
        """Raises: NotFound: If no machine has the given name."""
        for machine in self.list():
            if machine.name == name:
                return machine
        raise NotFound(f"machine {name}")

    def list(self) -> list[Machine]:
        """Return every stored machine.

        Files that are not valid records are skipped with a warning.
        """
        if not self.directory.exists():
            return []
        machines: list[Machine] = []
        for file in sorted(self.directory.glob("*.json")):
            try:
                machines.append(
                    Machine.model_validate_json(file.read_text(encoding="utf8"))
                )
            except (ValidationError, UnicodeDecodeError) as exce:
                warnings.warn(f"Skipping invalid machine file {file}: {exce}")
        return machines

    def delete(self, id: str) -> None:
        """Raises: NotFound: If there is no record for *id*."""
        try:
            self.path(id).unlink()
        except FileNotFoundError as exce:
            raise NotFound(f"machine {id}") from exce
