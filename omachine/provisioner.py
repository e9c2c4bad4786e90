"""High-level interface for machine lifecycle.

The :py:class:`Provisioner` moves a machine from one state to the other:
create, start, stop and delete. Every wait is a polling loop at a fixed
interval, without retry limit; loops end when the expected state is
reached, on a fatal error, or when the :py:class:`Context` is cancelled.
"""

from __future__ import annotations

from typing import Optional

from omachine import connectivity as connectivity_
from omachine.context import Context
from omachine.credentials import CredentialKey, CredentialStore
from omachine.errors import AlreadyExists, MachineErrored, NotFound
from omachine.machine import Machine, MachineStore
from omachine.provider import registry
from omachine.provider.base import CreateMachineRequest, MachineManager, ProviderMachine
from omachine.steps import (
    CREATION_STEPS,
    DELETION_STEPS,
    Creation,
    refresh_host,
)
from omachine.utils import ui
from omachine.utils.config import Configuration, Settings
from omachine.utils.constants import MACHINE_STATE_LITERAL


class Provisioner:
    """Creates, starts, stops and deletes the machines of one provider account"""

    def __init__(
        self,
        provider_name: str,
        credentials_name: str,
        manager: MachineManager,
        store: MachineStore,
        configuration: Configuration,
        settings: None | Settings = None,
    ) -> None:
        """
        Args:
            provider_name: Name of the provider, stored in the machine records.
            credentials_name: Name of the credentials, stored in the records.
            manager: Manager bound to the provider account.
            store: Where the machine records are kept.
            configuration: Location of the key files.
            settings: Poll interval, SSH and service parameters. Defaults to
                the settings of *configuration*.
        """
        self.provider_name = provider_name
        self.credentials_name = credentials_name
        self.manager = manager
        self.store = store
        self.configuration = configuration
        self.settings = settings if settings is not None else configuration.settings

        self.creation: Optional[Creation] = None
        """State of the last (or current) creation"""

    @classmethod
    def for_provider(
        cls,
        provider_name: str,
        credentials_name: str,
        *,
        configuration: Configuration,
        credential_store: CredentialStore,
        region: Optional[str] = None,
    ) -> Provisioner:
        """Build a provisioner from stored credentials.

        Raises:
            UnknownProvider: If the provider does not exist.
            NotFound: If the credentials are not stored.
            CredentialsNotSet: If the stored credentials are empty.
        """
        provider = registry.get(provider_name)
        credential_store.get(
            CredentialKey(credentials_name, provider_name), provider.credentials()
        )
        manager = provider.machine_manager(region or configuration.settings.default_region)
        return cls(
            provider_name,
            credentials_name,
            manager,
            MachineStore(configuration),
            configuration,
        )

    @classmethod
    def for_machine(
        cls,
        name: str,
        *,
        configuration: Configuration,
        credential_store: CredentialStore,
    ) -> Provisioner:
        """Build a provisioner for the provider account of machine *name*.

        Raises:
            NotFound: If the machine, or its credentials, do not exist.
        """
        machine = MachineStore(configuration).get_by_name(name)
        return cls.for_provider(
            machine.provider_name,
            machine.credentials_name,
            configuration=configuration,
            credential_store=credential_store,
            region=machine.region or None,
        )

    def wait_for_state(
        self, ctx: Context, id: str, target: MACHINE_STATE_LITERAL
    ) -> ProviderMachine:
        """Poll the provider until the instance *id* reaches *target*.

        Raises:
            MachineErrored: If the provider reports the instance in error.
            Cancelled: If *ctx* is cancelled, or its deadline passes.
        """
        while True:
            reported = self.manager.get(ctx, id)
            if reported.state == "error":
                raise MachineErrored(id)
            if reported.state == target:
                return reported
            ui.instance().notice(
                f"Still waiting for machine {id} to be {target}, currently {reported.state}"
            )
            ctx.sleep(self.settings.poll_interval)

    def wait_for_service(self, ctx: Context, machine: Machine) -> None:
        """Probe the service of *machine* over SSH until it is active.

        A refused connection (the machine is booting) and an inactive
        service are retried; any other SSH failure is raised.
        """
        client = machine.ssh_client(self.settings)
        while True:
            try:
                output = client.run(self.settings.service_probe, ctx=ctx)
            except ConnectionRefusedError as exce:
                ui.instance().notice(f"Waiting for SSH to be ready: {exce}")
                ctx.sleep(self.settings.poll_interval)
                continue

            status = output.text()
            if status == "active":
                ui.instance().info("Ollama started")
                return
            ui.instance().notice(f"Still waiting for Ollama to be started, status: {status}")
            ctx.sleep(self.settings.poll_interval)

    def create_machine(
        self,
        ctx: Context,
        request: CreateMachineRequest,
        options: connectivity_.Options,
    ) -> Machine:
        """Create a machine, and wait until its service is usable.

        The record is saved as soon as the provider created the instance,
        then updated once the instance runs and once the service host is
        known.

        Returns:
            The machine, ready.

        Raises:
            AlreadyExists: If a machine with the same name is stored;
                nothing is created.
            Any exception raised by a step. The creation is left in the
            ``Failed`` phase and nothing is rolled back.
        """
        try:
            self.store.get_by_name(request.name)
        except NotFound:
            pass
        else:
            raise AlreadyExists(request.name)

        creation = Creation(request, connectivity_.get_provider(options))
        self.creation = creation
        steps = [s for s in CREATION_STEPS if s.accepts(self)]

        with ui.instance().section(f"Creating machine {request.name}"):
            for step_cls in ui.instance().iterate(
                steps, fmt=lambda s: f"{s.name}: {s.description}" if s.description else s.name
            ):
                try:
                    step_cls(self, creation).process(ctx)
                except BaseException:
                    failed_at = creation.phase
                    creation.reach("Failed")
                    ui.instance().fatal(
                        f"Creation of {request.name} failed after phase {failed_at}"
                    )
                    raise
                creation.reach(step_cls.phase)
                ui.instance().debug(f"Machine {request.name} reached {step_cls.phase}")

        creation.reach("Ready")
        machine = creation.require_machine()
        ui.instance().notice(
            f"Machine {machine.name} ready, Ollama at {machine.service_address()}"
        )
        return machine

    def delete_machine(self, ctx: Context, name: str) -> None:
        """Delete the instance, the key files and the record, in that order.

        A failure stops the deletion: in particular, if the key files
        cannot be removed the record is kept, so the deletion can be
        retried. Key files that are already gone are not an error.
        """
        machine = self.store.get_by_name(name)
        with ui.instance().section(f"Deleting machine {name}"):
            for step_cls in ui.instance().iterate(DELETION_STEPS, fmt=lambda s: s.name):
                step_cls(self, machine).process(ctx)
        ui.instance().notice(f"Machine {name} deleted")

    def start_machine(self, ctx: Context, name: str) -> Machine:
        """Start a stopped machine and wait until it runs."""
        machine = self.store.get_by_name(name)
        with ui.instance().section(f"Starting machine {name}"):
            self.manager.start(ctx, machine.id)
            reported = self.wait_for_state(ctx, machine.id, "running")
            machine.update_from(reported)
            refresh_host(machine, reported)
            self.store.save(machine)
        ui.instance().notice(f"Machine {name} started")
        return machine

    def stop_machine(self, ctx: Context, name: str) -> Machine:
        """Stop a machine and wait until it is stopped."""
        machine = self.store.get_by_name(name)
        with ui.instance().section(f"Stopping machine {name}"):
            self.manager.stop(ctx, machine.id)
            reported = self.wait_for_state(ctx, machine.id, "stopped")
            machine.update_from(reported)
            self.store.save(machine)
        ui.instance().notice(f"Machine {name} stopped")
        return machine
