"""Steps of the machine lifecycle.

Creation is a fixed sequence of steps; each one moves the machine to the
phase named by its :py:attr:`Step.phase`. Deletion is another, shorter,
sequence. Steps are executed by :py:class:`omachine.provisioner.Provisioner`.
"""

from __future__ import annotations

import dataclasses
from abc import abstractmethod
from typing import TYPE_CHECKING, ClassVar, List, Optional

from typing_extensions import Literal

from omachine import cloudinit, ssh
from omachine.connectivity import Connectivity, get_provider_by_name
from omachine.context import Context
from omachine.errors import BackendError, Bug
from omachine.machine import Machine
from omachine.provider.base import CreateMachineRequest, ProviderMachine
from omachine.utils import ui
from omachine.utils.constants import (
    OLLAMA_ENV_FILE_PATH,
    OLLAMA_INSTALL_SCRIPT,
    OLLAMA_SERVICE_OVERRIDE_PATH,
    SSH_USERNAME,
)

if TYPE_CHECKING:
    from omachine.provisioner import Provisioner

PHASE_LITERAL = Literal[
    "Requested",
    "KeyGenerated",
    "ConfigAssembled",
    "InstanceRequested",
    "InstanceRunning",
    "ServiceActive",
    "HostResolved",
    "Ready",
    "Failed",
]
"""Phases of the creation of a machine.

``Requested`` is the phase before any step ran; ``Failed`` is reachable
from any other phase, and is terminal. There is no rollback: a failed
machine is removed by deleting it.
"""


@dataclasses.dataclass
class Creation:
    """State shared by the creation steps"""

    request: CreateMachineRequest
    connectivity: Connectivity
    phase: PHASE_LITERAL = "Requested"
    history: List[str] = dataclasses.field(default_factory=list)
    """Phases reached, in order"""

    key_pair: Optional[ssh.KeyPair] = None
    key_files: Optional[ssh.KeyPairFiles] = None
    config: Optional[cloudinit.Config] = None
    machine: Optional[Machine] = None

    def reach(self, phase: PHASE_LITERAL) -> None:
        self.phase = phase
        self.history.append(phase)

    def require_machine(self) -> Machine:
        if self.machine is None:
            raise Bug("Machine not created yet")
        return self.machine


def generate_cloud_init(connectivity: Connectivity, public_key: bytes) -> cloudinit.Config:
    """Build the cloud-init configuration installing and starting ollama.

    The configuration contains, in order: the login user with *public_key*,
    the connectivity setup commands, the systemd override pointing the
    service to its environment file, and the install and start commands.
    """
    config = cloudinit.Config()
    config.add_user(
        cloudinit.User(
            name=SSH_USERNAME,
            groups="sudo",
            shell="/bin/bash",
            sudo="ALL=(ALL) NOPASSWD:ALL",
            ssh_authorized_keys=[public_key.decode("utf8").strip()],
        )
    )
    connectivity.install_via_cloud_init(config)
    config.add_file(
        cloudinit.File(
            path=OLLAMA_SERVICE_OVERRIDE_PATH,
            content=f"[Service]\nEnvironmentFile={OLLAMA_ENV_FILE_PATH}",
        )
    )
    config.add_runcmd(["sh", "-c", f"curl -fsSL {OLLAMA_INSTALL_SCRIPT} | sh"])
    config.add_runcmd(["sh", "-c", "sudo systemctl start ollama"])
    return config


class Step:
    name: ClassVar[str]
    """Friendly name to give the user"""

    description: ClassVar[Optional[str]] = None
    """Extended --user facing-- description about the step behaviour"""

    def __init__(self, provisioner: Provisioner) -> None:
        self.provisioner = provisioner

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class CreationStep(Step):
    """Base class for the steps creating a machine"""

    phase: ClassVar[PHASE_LITERAL]
    """Phase reached once the step completes"""

    def __init__(self, provisioner: Provisioner, creation: Creation) -> None:
        super().__init__(provisioner)
        self.creation = creation

    @classmethod
    def accepts(cls, provisioner: Provisioner) -> bool:
        """Returns ``True`` if the step applies to the provider of *provisioner*"""
        return True

    @abstractmethod
    def process(self, ctx: Context) -> None:
        """Execute this step.

        Raises: If something fails.
        """
        raise NotImplementedError(f"{self.__class__.__name__}()")


class GenerateKeyPair(CreationStep):
    name = "Generating SSH key pair"
    phase = "KeyGenerated"

    def process(self, ctx: Context) -> None:
        keys_dir = self.provisioner.configuration.keys_dir
        name = self.creation.request.name
        self.creation.key_pair, self.creation.key_files = ssh.generate_key_pair(
            keys_dir, name, comment=f"ollama-machine-{name}"
        )


class AssembleConfig(CreationStep):
    name = "Generating machine config"
    description = "Rendering cloud-init user data"
    phase = "ConfigAssembled"

    @classmethod
    def accepts(cls, provisioner: Provisioner) -> bool:
        return provisioner.manager.machine_kind() == "vm"

    def process(self, ctx: Context) -> None:
        if self.creation.key_pair is None:
            raise Bug("Key pair not generated")
        self.creation.config = generate_cloud_init(
            self.creation.connectivity, self.creation.key_pair.public_key
        )
        self.creation.request.user_data = self.creation.config.render()


class RequestInstance(CreationStep):
    name = "Creating machine"
    description = "Requesting the instance and saving it to disk"
    phase = "InstanceRequested"

    def process(self, ctx: Context) -> None:
        reported = self.provisioner.manager.create(ctx, self.creation.request)
        machine = Machine(
            id=reported.id,
            name=self.creation.request.name,
            ip=reported.ip,
            region=reported.region or self.creation.request.region,
            state=reported.state,
            provider_name=self.provisioner.provider_name,
            credentials_name=self.provisioner.credentials_name,
            key_pair=self.creation.key_files,
            connectivity=self.creation.connectivity.name,
        )
        self.creation.machine = machine
        # Saved before waiting, so an interrupted creation can be deleted
        self.provisioner.store.save(machine)


class WaitInstanceRunning(CreationStep):
    name = "Waiting for machine to be ready"
    phase = "InstanceRunning"

    def process(self, ctx: Context) -> None:
        machine = self.creation.require_machine()
        reported = self.provisioner.wait_for_state(ctx, machine.id, "running")
        machine.update_from(reported)
        self.provisioner.store.save(machine)


class WaitServiceActive(CreationStep):
    name = "Waiting for Ollama to be started"
    phase = "ServiceActive"

    def process(self, ctx: Context) -> None:
        self.provisioner.wait_for_service(ctx, self.creation.require_machine())


class ResolveHost(CreationStep):
    name = "Retrieving Ollama host"
    phase = "HostResolved"

    def process(self, ctx: Context) -> None:
        machine = self.creation.require_machine()
        ctx.check()
        strategy = self.creation.connectivity
        host = strategy.retrieve_ollama_host(machine, self.provisioner.settings)
        if not host and strategy.name != "private":
            raise BackendError(f"connectivity {strategy.name} resolved no host for {machine.id}")
        machine.service_host = host
        machine.service_port = self.provisioner.settings.service_port
        self.provisioner.store.save(machine)


CREATION_STEPS: list[type[CreationStep]] = [
    GenerateKeyPair,
    AssembleConfig,
    RequestInstance,
    WaitInstanceRunning,
    WaitServiceActive,
    ResolveHost,
]


class DeletionStep(Step):
    """Base class for steps executed during machine deletion.

    Steps run in order and stop at the first failure; the remaining steps
    are not attempted.
    """

    def __init__(self, provisioner: Provisioner, machine: Machine) -> None:
        super().__init__(provisioner)
        self.machine = machine

    @abstractmethod
    def process(self, ctx: Context) -> None:
        raise NotImplementedError(f"{self.__class__.__name__}()")


class DeleteInstance(DeletionStep):
    name = "Deleting machine"

    def process(self, ctx: Context) -> None:
        self.provisioner.manager.delete(ctx, self.machine.id)


class DeleteKeyPair(DeletionStep):
    name = "Deleting key pair files"

    def process(self, ctx: Context) -> None:
        if self.machine.key_pair is None:
            ui.instance().info(f"Machine {self.machine.name} has no key pair")
            return
        ssh.delete_key_pair_files(self.machine.key_pair)


class DeleteRecord(DeletionStep):
    name = "Deleting machine configuration"

    def process(self, ctx: Context) -> None:
        self.provisioner.store.delete(self.machine.id)


DELETION_STEPS: list[type[DeletionStep]] = [DeleteInstance, DeleteKeyPair, DeleteRecord]


def refresh_host(machine: Machine, reported: ProviderMachine) -> None:
    """Update the service host of a public machine after a restart.

    The public IP of a machine may change when it is stopped; other
    strategies keep their address.
    """
    strategy = get_provider_by_name(machine.connectivity)
    if strategy.name == "public" and reported.ip:
        machine.service_host = strategy.retrieve_ollama_host(machine)
