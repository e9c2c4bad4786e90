"""Provider doing nothing; used for testing and demonstrations.

The machine manager always returns the same machine. It reports
``pending`` on the first three calls to ``get``, then ``running``.
"""

from __future__ import annotations

import dataclasses
from typing import Optional

from omachine.context import Context
from omachine.provider import registry
from omachine.provider.base import (
    CreateMachineRequest,
    Credentials,
    MachineManager,
    Provider,
    ProviderMachine,
    credential_field,
)
from omachine.utils import ui
from omachine.utils.constants import MACHINE_KIND_LITERAL, MACHINE_STATE_LITERAL

MACHINE_ID = "4b00c526-5d3f-4648-b69b-272ab71c6e18"
MACHINE_NAME = "fake"
MACHINE_IP = "1.2.3.4"

PENDING_GETS = 3
"""Number of ``get`` calls reporting ``pending`` before ``running``"""


@dataclasses.dataclass
class NoopCredentials(Credentials):
    provider = "noop"

    nothing: str = credential_field("nothing", "nothing is nothing")


class NoopMachineManager(MachineManager):
    def __init__(self, region: str = "") -> None:
        self.region = region
        self.get_count = 0
        self.state: MACHINE_STATE_LITERAL = "running"

    def machine_kind(self) -> MACHINE_KIND_LITERAL:
        return "vm"

    def _machine(self, state: MACHINE_STATE_LITERAL) -> ProviderMachine:
        return ProviderMachine(
            id=MACHINE_ID, name=MACHINE_NAME, ip=MACHINE_IP, region=self.region, state=state
        )

    def create(self, ctx: Context, request: CreateMachineRequest) -> ProviderMachine:
        ctx.check()
        ui.instance().debug(f"noop: create {request.name}, {len(request.user_data)} bytes of user data")
        return self._machine("pending")

    def delete(self, ctx: Context, id: str) -> None:
        ctx.check()

    def start(self, ctx: Context, id: str) -> None:
        ctx.check()
        self.state = "running"

    def stop(self, ctx: Context, id: str) -> None:
        ctx.check()
        self.state = "stopped"

    def get(self, ctx: Context, id: str) -> ProviderMachine:
        ctx.check()
        if self.get_count < PENDING_GETS:
            self.get_count += 1
            return self._machine("pending")
        return self._machine(self.state)


@registry.register
class NoopProvider(Provider):
    name = "noop"
    credentials_class = NoopCredentials

    def _machine_manager(self, region: Optional[str]) -> MachineManager:
        return NoopMachineManager(region or "")
