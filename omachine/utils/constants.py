"""Collection of global constants and useful definitions"""
from __future__ import annotations

from typing_extensions import Literal, TypeAlias, get_args

MACHINE_STATE_LITERAL: TypeAlias = Literal[
    "pending", "running", "stopped", "terminated", "error"
]
"""Canonical states of a machine, regardless of the provider.

- ``pending``: the instance is transitioning; also used for every native
  state a provider reports that has no mapping.
- ``running``: the instance is up; it may still be booting the service.
- ``stopped``: the instance is settled down, only storage is billed.
- ``terminated``: the instance no longer exists in the provider.
- ``error``: the provider reports a terminal failure.
"""

MACHINE_STATES = get_args(MACHINE_STATE_LITERAL)

MACHINE_KIND_LITERAL: TypeAlias = Literal["vm", "container"]
"""Kind of instance a provider manages; only ``vm`` receives cloud-init"""

CONNECTIVITY_LITERAL: TypeAlias = Literal["private", "public", "tailscale", ""]
"""Connectivity strategy names. Empty means private."""

SSH_USERNAME = "ollama-machine"
"""Login user created in every machine"""

SSH_DEFAULT_PORT = 22

OLLAMA_DEFAULT_PORT = 11434

OLLAMA_ENV_FILE_PATH = f"/home/{SSH_USERNAME}/env"
"""Environment file read by the ollama systemd unit"""

OLLAMA_SERVICE_OVERRIDE_PATH = "/etc/systemd/system/ollama.service.d/override.conf"

OLLAMA_INSTALL_SCRIPT = "https://ollama.com/install.sh"

TAILSCALE_INSTALL_SCRIPT = "https://tailscale.com/install.sh"

CREATED_BY_TAG = "ollama-machine"
"""Value of the ``created_by`` tag set on cloud resources"""

STORAGE_PATH_ENV = "OLLAMA_MACHINE_STORAGE_PATH"
"""Environment variable overriding the storage base directory"""
