from __future__ import annotations

import io
import pathlib
import warnings
from unittest.mock import MagicMock, patch

import pytest

from omachine.connectivity import Options
from omachine.context import Context
from omachine.credentials import CredentialKey, CredentialStore
from omachine.errors import (
    AlreadyExists,
    BackendError,
    Cancelled,
    CredentialsNotSet,
    DeadlineExceeded,
    MachineErrored,
    NotFound,
    SSHError,
    UnknownProvider,
)
from omachine.machine import Machine, MachineStore
from omachine.provider.base import CreateMachineRequest, ProviderMachine
from omachine.provider.noop import (
    MACHINE_ID,
    MACHINE_IP,
    NoopCredentials,
    NoopMachineManager,
)
from omachine.provisioner import Provisioner
from omachine.utils import ui
from omachine.utils._ui_log import LogUI
from omachine.utils.config import Configuration, Settings

REFUSED = (255, b"ssh: connect to host 1.2.3.4 port 22: Connection refused\n")

ALL_PHASES = [
    "KeyGenerated",
    "ConfigAssembled",
    "InstanceRequested",
    "InstanceRunning",
    "ServiceActive",
    "HostResolved",
    "Ready",
]


def create(provisioner: Provisioner, name: str = "demo", **options) -> Machine:
    return provisioner.create_machine(
        Context(), CreateMachineRequest(name=name), Options(**options)
    )


class TestCreate:
    def test_noop_ramp(self, noop_provisioner: Provisioner, fake_ssh) -> None:
        manager = noop_provisioner.manager
        with patch.object(manager, "get", wraps=manager.get) as get:
            machine = create(noop_provisioner)

        assert get.call_count == 4
        assert noop_provisioner.creation is not None
        assert noop_provisioner.creation.phase == "Ready"
        assert noop_provisioner.creation.history == ALL_PHASES
        assert machine.name == "demo"
        assert machine.state == "running"

    def test_record(
        self, noop_provisioner: Provisioner, store: MachineStore, fake_ssh
    ) -> None:
        create(noop_provisioner)

        stored = store.get(MACHINE_ID)
        assert stored.name == "demo"
        assert stored.ip == MACHINE_IP
        assert stored.state == "running"
        assert stored.provider_name == "noop"
        assert stored.credentials_name == "test"
        assert stored.connectivity == "private"
        assert stored.service_host == "localhost"
        assert stored.service_port == 11434
        assert stored.key_pair is not None
        assert pathlib.Path(stored.key_pair.private_key_path).exists()
        assert pathlib.Path(stored.key_pair.public_key_path).exists()

    def test_user_data(self, noop_provisioner: Provisioner, fake_ssh) -> None:
        manager = noop_provisioner.manager
        with patch.object(manager, "create", wraps=manager.create) as create_:
            create(noop_provisioner)

        request = create_.call_args.args[1]
        assert request.user_data.startswith(b"#cloud-config\n")
        assert b"ollama-machine-demo" in request.user_data

    def test_service_probe(self, noop_provisioner: Provisioner, fake_ssh) -> None:
        create(noop_provisioner)
        assert fake_ssh.remote_commands() == ["systemctl is-active ollama"]

    def test_public(self, noop_provisioner: Provisioner, fake_ssh) -> None:
        machine = create(noop_provisioner, public=True)

        assert machine.connectivity == "public"
        assert machine.service_host == MACHINE_IP
        assert machine.service_address() == f"{MACHINE_IP}:11434"

    def test_tailscale(self, noop_provisioner: Provisioner, fake_ssh) -> None:
        fake_ssh.responses = [(0, b"active\n"), (0, b"100.101.102.103\n")]

        machine = create(noop_provisioner, tailscale_auth_key="tskey-1")

        assert machine.connectivity == "tailscale"
        assert machine.service_host == "100.101.102.103"
        assert fake_ssh.remote_commands() == ["systemctl is-active ollama", "tailscale ip -4"]

    def test_tailscale_without_address(
        self, noop_provisioner: Provisioner, store: MachineStore, fake_ssh
    ) -> None:
        fake_ssh.responses = [(0, b"active\n"), (0, b"\n")]

        with pytest.raises(BackendError, match="tailscale"):
            create(noop_provisioner, tailscale_auth_key="tskey-1")

        assert noop_provisioner.creation.phase == "Failed"
        assert "Ready" not in noop_provisioner.creation.history
        assert store.get(MACHINE_ID).service_host == ""

    def test_waits_visible_by_default(
        self, noop_provisioner: Provisioner, fake_ssh, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(warnings, "showwarning", warnings.showwarning)
        stream = io.StringIO()
        monkeypatch.setattr(ui, "_ui", LogUI(ui.NOTICE, stream))
        fake_ssh.responses = [REFUSED, (3, b"activating\n")]

        create(noop_provisioner)

        output = stream.getvalue()
        assert output.count("Still waiting for machine") == 3
        assert "Waiting for SSH to be ready" in output
        assert "Still waiting for Ollama to be started, status: activating" in output

    def test_refused_and_inactive_retried(
        self, noop_provisioner: Provisioner, fake_ssh
    ) -> None:
        fake_ssh.responses = [REFUSED, REFUSED, (3, b"activating\n")]

        machine = create(noop_provisioner)

        assert machine.service_host == "localhost"
        assert len(fake_ssh.remote_commands()) == 4

    def test_ssh_failure_is_fatal(
        self, noop_provisioner: Provisioner, store: MachineStore, fake_ssh
    ) -> None:
        fake_ssh.responses = [(255, b"Permission denied (publickey).\n")]

        with pytest.raises(SSHError):
            create(noop_provisioner)

        assert noop_provisioner.creation is not None
        assert noop_provisioner.creation.phase == "Failed"
        assert noop_provisioner.creation.history == [*ALL_PHASES[:4], "Failed"]
        # Nothing is rolled back; the machine can be deleted
        assert store.get(MACHINE_ID).state == "running"

    def test_machine_error(
        self, noop_provisioner: Provisioner, store: MachineStore, fake_ssh
    ) -> None:
        manager = noop_provisioner.manager
        errored = ProviderMachine(id=MACHINE_ID, state="error")
        with patch.object(manager, "get", return_value=errored):
            with pytest.raises(MachineErrored) as exce:
                create(noop_provisioner)

        assert exce.value.instance_id == MACHINE_ID
        assert noop_provisioner.creation.phase == "Failed"
        assert store.get(MACHINE_ID).state == "pending"

    def test_name_taken(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        store.save(machine)
        manager = noop_provisioner.manager
        with patch.object(manager, "create") as create_:
            with pytest.raises(AlreadyExists):
                create(noop_provisioner, name=machine.name)
        create_.assert_not_called()

    def test_cancelled(self, noop_provisioner: Provisioner, fake_ssh) -> None:
        ctx = Context()
        ctx.cancel()

        with pytest.raises(Cancelled):
            noop_provisioner.create_machine(
                ctx, CreateMachineRequest(name="demo"), Options()
            )

        assert noop_provisioner.creation.history == [
            "KeyGenerated",
            "ConfigAssembled",
            "Failed",
        ]

    def test_deadline(
        self, configuration: Configuration, store: MachineStore, fake_ssh
    ) -> None:
        manager = MagicMock(spec=NoopMachineManager)
        manager.machine_kind.return_value = "vm"
        manager.create.return_value = ProviderMachine(id="i-1")
        manager.get.return_value = ProviderMachine(id="i-1", state="pending")
        provisioner = Provisioner(
            "noop", "test", manager, store, configuration, Settings(poll_interval=0.05)
        )

        with pytest.raises(DeadlineExceeded):
            provisioner.create_machine(
                Context().with_timeout(0.3), CreateMachineRequest(name="demo"), Options()
            )

        assert manager.get.call_count >= 2
        assert provisioner.creation.phase == "Failed"

    def test_container_has_no_user_data(
        self, configuration: Configuration, store: MachineStore, fake_ssh
    ) -> None:
        manager = NoopMachineManager()
        provisioner = Provisioner("noop", "test", manager, store, configuration)
        with patch.object(manager, "machine_kind", return_value="container"), patch.object(
            manager, "create", wraps=manager.create
        ) as create_:
            create(provisioner)

        assert create_.call_args.args[1].user_data == b""
        assert "ConfigAssembled" not in provisioner.creation.history


class TestDelete:
    def test_delete(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        store.save(machine)
        manager = noop_provisioner.manager
        with patch.object(manager, "delete", wraps=manager.delete) as delete:
            noop_provisioner.delete_machine(Context(), "demo")

        delete.assert_called_once()
        assert delete.call_args.args[1] == MACHINE_ID
        assert store.list() == []
        assert not pathlib.Path(machine.key_pair.private_key_path).exists()
        assert not pathlib.Path(machine.key_pair.public_key_path).exists()

    def test_keys_already_removed(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        store.save(machine)
        pathlib.Path(machine.key_pair.private_key_path).unlink()
        pathlib.Path(machine.key_pair.public_key_path).unlink()

        noop_provisioner.delete_machine(Context(), "demo")

        assert store.list() == []

    def test_key_removal_failure_keeps_record(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        store.save(machine)
        manager = noop_provisioner.manager
        with patch.object(manager, "delete") as delete, patch(
            "omachine.steps.ssh.delete_key_pair_files",
            side_effect=PermissionError("read-only"),
        ):
            with pytest.raises(PermissionError):
                noop_provisioner.delete_machine(Context(), "demo")

        delete.assert_called_once()
        assert store.get_by_name("demo") == machine

        # Retrying once the problem is fixed finishes the job
        noop_provisioner.delete_machine(Context(), "demo")
        assert store.list() == []

    def test_backend_failure_keeps_everything(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        store.save(machine)
        manager = noop_provisioner.manager
        with patch.object(manager, "delete", side_effect=Cancelled):
            with pytest.raises(Cancelled):
                noop_provisioner.delete_machine(Context(), "demo")

        assert store.get_by_name("demo") == machine
        assert pathlib.Path(machine.key_pair.private_key_path).exists()

    def test_without_key_pair(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        machine.key_pair = None
        store.save(machine)

        noop_provisioner.delete_machine(Context(), "demo")

        assert store.list() == []

    def test_unknown(self, noop_provisioner: Provisioner) -> None:
        with pytest.raises(NotFound):
            noop_provisioner.delete_machine(Context(), "ghost")


class TestPower:
    def test_stop_start(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        store.save(machine)

        stopped = noop_provisioner.stop_machine(Context(), "demo")
        assert stopped.state == "stopped"
        assert store.get_by_name("demo").state == "stopped"

        started = noop_provisioner.start_machine(Context(), "demo")
        assert started.state == "running"
        assert store.get_by_name("demo").state == "running"

    def test_start_refreshes_public_host(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        machine.connectivity = "public"
        machine.service_host = machine.ip
        store.save(machine)
        manager = noop_provisioner.manager
        moved = ProviderMachine(id=MACHINE_ID, ip="9.9.9.9", state="running")

        with patch.object(manager, "get", return_value=moved):
            started = noop_provisioner.start_machine(Context(), "demo")

        assert started.ip == "9.9.9.9"
        assert store.get_by_name("demo").service_host == "9.9.9.9"

    def test_start_keeps_private_host(
        self, noop_provisioner: Provisioner, store: MachineStore, machine: Machine
    ) -> None:
        store.save(machine)
        manager = noop_provisioner.manager
        moved = ProviderMachine(id=MACHINE_ID, ip="9.9.9.9", state="running")

        with patch.object(manager, "get", return_value=moved):
            started = noop_provisioner.start_machine(Context(), "demo")

        assert started.service_host == "localhost"


class TestFactories:
    def test_for_provider(
        self, configuration: Configuration, credential_store: CredentialStore
    ) -> None:
        credential_store.save(CredentialKey("test", "noop"), NoopCredentials("x"))

        provisioner = Provisioner.for_provider(
            "noop",
            "test",
            configuration=configuration,
            credential_store=credential_store,
            region="eu-west-3",
        )

        assert isinstance(provisioner.manager, NoopMachineManager)
        assert provisioner.manager.region == "eu-west-3"
        assert provisioner.settings is configuration.settings

    def test_default_region(
        self, configuration: Configuration, credential_store: CredentialStore
    ) -> None:
        configuration.settings = Settings(poll_interval=0, default_region="us-east-1")
        credential_store.save(CredentialKey("test", "noop"), NoopCredentials("x"))

        provisioner = Provisioner.for_provider(
            "noop", "test", configuration=configuration, credential_store=credential_store
        )

        assert provisioner.manager.region == "us-east-1"

    def test_missing_credentials(
        self, configuration: Configuration, credential_store: CredentialStore
    ) -> None:
        with pytest.raises(NotFound):
            Provisioner.for_provider(
                "noop", "test", configuration=configuration, credential_store=credential_store
            )

    def test_empty_credentials(
        self, configuration: Configuration, credential_store: CredentialStore
    ) -> None:
        credential_store.save(CredentialKey("test", "noop"), NoopCredentials())

        with pytest.raises(CredentialsNotSet):
            Provisioner.for_provider(
                "noop", "test", configuration=configuration, credential_store=credential_store
            )

    def test_unknown_provider(
        self, configuration: Configuration, credential_store: CredentialStore
    ) -> None:
        with pytest.raises(UnknownProvider):
            Provisioner.for_provider(
                "gopher", "test", configuration=configuration, credential_store=credential_store
            )

    def test_for_machine(
        self,
        configuration: Configuration,
        credential_store: CredentialStore,
        store: MachineStore,
        machine: Machine,
    ) -> None:
        store.save(machine)
        credential_store.save(CredentialKey("test", "noop"), NoopCredentials("x"))

        provisioner = Provisioner.for_machine(
            "demo", configuration=configuration, credential_store=credential_store
        )

        assert provisioner.provider_name == "noop"
        assert provisioner.credentials_name == "test"
        assert provisioner.manager.region == "eu-west-3"
