"""Cloud-init user-data generation.

The configuration is assembled in memory, then rendered into the
``#cloud-config`` YAML document consumed at first boot. Providers receive
the rendered bytes and pass them along without interpreting them.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

import yaml

HEADER = "#cloud-config\n"
"""Marker line identifying the document to cloud-init"""


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys holding empty values; cloud-init treats absent and empty alike"""
    return {k: v for k, v in data.items() if v not in (None, "", [], {})}


@dataclass
class User:
    """User entry of the ``users`` module"""

    name: str
    groups: str = ""
    shell: str = ""
    sudo: str = ""
    ssh_authorized_keys: list[str] = field(default_factory=list)
    passwd: str = ""
    """Password hash, as accepted by ``chpasswd -e``"""

    def dict(self) -> dict[str, Any]:
        data = _compact(dataclasses.asdict(self))
        data["name"] = self.name
        return data


@dataclass
class File:
    """Entry of the ``write_files`` module"""

    path: str
    content: str
    owner: str = ""
    permissions: str = ""
    encoding: str = ""

    def dict(self) -> dict[str, Any]:
        data = _compact(dataclasses.asdict(self))
        data["path"] = self.path
        data["content"] = self.content
        return data


@dataclass
class Config:
    """A cloud-init configuration under construction.

    Lists are kept in insertion order: run commands execute in the order
    they were added.
    """

    hostname: str = ""
    ssh_authorized_keys: list[str] = field(default_factory=list)
    users: list[User] = field(default_factory=list)
    runcmd: list[list[str]] = field(default_factory=list)
    bootcmd: list[str] = field(default_factory=list)
    write_files: list[File] = field(default_factory=list)

    def add_ssh_authorized_keys(self, *keys: str) -> None:
        self.ssh_authorized_keys.extend(keys)

    def add_user(self, user: User) -> None:
        self.users.append(user)

    def add_runcmd(self, cmd: list[str]) -> None:
        """Append a command, in exec form (``["sh", "-c", "..."]``)."""
        self.runcmd.append(list(cmd))

    def add_bootcmd(self, cmd: str) -> None:
        self.bootcmd.append(cmd)

    def add_file(self, file: File) -> None:
        self.write_files.append(file)

    def dict(self) -> dict[str, Any]:
        """Return the YAML structure, without the empty fields."""
        return _compact(
            {
                "hostname": self.hostname,
                "ssh_authorized_keys": list(self.ssh_authorized_keys),
                "users": [u.dict() for u in self.users],
                "runcmd": [list(c) for c in self.runcmd],
                "bootcmd": list(self.bootcmd),
                "write_files": [f.dict() for f in self.write_files],
            }
        )

    def render(self) -> bytes:
        """Generate the user-data document.

        Returns:
            The ``#cloud-config`` marker followed by the YAML body, UTF-8
            encoded.
        """
        body = yaml.safe_dump(self.dict(), sort_keys=False, default_flow_style=False)
        return (HEADER + body).encode("utf8")
