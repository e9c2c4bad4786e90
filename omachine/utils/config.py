"""Storage locations and user settings.

A :py:class:`Configuration` is always passed explicitly to the objects
that need a location on disk (stores, key generation, the provisioner).
Only the command line creates one from the environment, so tests and
library users never share hidden state.
"""
from __future__ import annotations

import os
import pathlib
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from omachine.errors import ConfigurationError
from omachine.utils import constants, ui

FOLDER_MODE = 0o750
"""Mode used when creating the storage folders"""

SETTINGS_FILENAME = "settings.yaml"


class Settings(BaseModel):
    """User tunable values, read from ``settings.yaml`` in the base folder.

    Every value has a default; the file is optional.
    """

    model_config = ConfigDict(extra="forbid")

    poll_interval: float = 5
    """Seconds to sleep between two polls of a machine or service state"""

    ssh_port: int = constants.SSH_DEFAULT_PORT
    ssh_user: str = constants.SSH_USERNAME
    ssh_connect_timeout: int = 10
    """Passed to ``ssh(1)`` as ``ConnectTimeout``"""

    service_port: int = constants.OLLAMA_DEFAULT_PORT
    service_probe: str = "systemctl is-active ollama"
    """Remote command printing ``active`` once the service runs"""

    default_region: Optional[str] = None
    """Region used when ``--region`` is not given"""

    tunnel_bind: str = "127.0.0.1"
    """Local address the tunnel listens on"""


class Configuration:
    """Location of the files managed by the library.

    The base folder contains::

        <base>/
            machines/<id>.json
            keys/<name>, keys/<name>.pub
            settings.yaml
    """

    def __init__(self, base_dir: pathlib.Path | str) -> None:
        self.base_dir = pathlib.Path(base_dir).expanduser()
        """Root folder for every file the library writes"""

        self._settings: None | Settings = None

    @classmethod
    def from_env(cls, environ: None | Mapping[str, str] = None) -> Configuration:
        """Build the configuration from the process environment.

        ``OLLAMA_MACHINE_STORAGE_PATH`` overrides the default
        ``~/.ollama/machine`` folder.
        """
        environ = os.environ if environ is None else environ
        base = environ.get(constants.STORAGE_PATH_ENV, "")
        if base == "":
            return cls(pathlib.Path.home() / ".ollama" / "machine")
        return cls(base)

    @property
    def machines_dir(self) -> pathlib.Path:
        """Folder containing one JSON record per machine"""
        return self.base_dir / "machines"

    @property
    def keys_dir(self) -> pathlib.Path:
        """Folder containing the SSH key pair of every machine"""
        return self.base_dir / "keys"

    @property
    def settings_file(self) -> pathlib.Path:
        return self.base_dir / SETTINGS_FILENAME

    def init(self, dry_run: bool = False) -> None:
        """Create the storage folders, if missing.

        Args:
            dry_run: If set to ``True``, only print the folders.
        """
        for folder in (self.machines_dir, self.keys_dir):
            if folder.exists():
                continue
            if dry_run:
                ui.instance().notice(f"Dry run: not creating folder {folder}")
                continue
            ui.instance().debug(f"Creating folder {folder}")
            folder.mkdir(mode=FOLDER_MODE, parents=True, exist_ok=True)

    @property
    def settings(self) -> Settings:
        """Settings loaded from disk; read once and cached"""
        if self._settings is None:
            self._settings = self.load_settings()
        return self._settings

    @settings.setter
    def settings(self, value: Settings) -> None:
        self._settings = value

    def load_settings(self) -> Settings:
        """Read the settings file, falling back to defaults if absent.

        Raises:
            ConfigurationError: If the file exists but is not valid.
        """
        if not self.settings_file.exists():
            return Settings()
        try:
            data = yaml.safe_load(self.settings_file.read_text(encoding="utf8"))
        except yaml.YAMLError as exce:
            raise ConfigurationError(
                f"Invalid YAML in {self.settings_file}: {exce}"
            ) from exce
        try:
            return Settings.model_validate(data or {})
        except ValidationError as exce:
            raise ConfigurationError(
                f"Invalid settings in {self.settings_file}: {exce}"
            ) from exce

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(base_dir={str(self.base_dir)!r})"
