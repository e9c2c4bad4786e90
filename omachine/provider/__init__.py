"""Cloud providers; see :py:mod:`omachine.provider.base` for the API"""

from omachine.provider.base import (
    CreateMachineRequest,
    Credentials,
    MachineManager,
    Provider,
    ProviderMachine,
)
from omachine.provider.registry import get, load_providers, names, register
