from __future__ import annotations

import jsonschema
import pytest
import yaml

from omachine import cloudinit
from omachine.connectivity import (
    PrivateConnectivity,
    PublicConnectivity,
    TailscaleConnectivity,
)
from omachine.steps import generate_cloud_init
from omachine.utils.constants import OLLAMA_SERVICE_OVERRIDE_PATH

COMMAND = {"type": "array", "items": {"type": "string"}, "minItems": 1}

SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "hostname": {"type": "string"},
        "ssh_authorized_keys": {"type": "array", "items": {"type": "string"}},
        "users": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string"},
                    "groups": {"type": "string"},
                    "shell": {"type": "string"},
                    "sudo": {"type": "string"},
                    "passwd": {"type": "string"},
                    "ssh_authorized_keys": {
                        "type": "array",
                        "items": {"type": "string"},
                    },
                },
            },
        },
        "runcmd": {"type": "array", "items": COMMAND},
        "bootcmd": {"type": "array", "items": {"type": "string"}},
        "write_files": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["path", "content"],
                "additionalProperties": False,
                "properties": {
                    "path": {"type": "string"},
                    "content": {"type": "string"},
                    "owner": {"type": "string"},
                    "permissions": {"type": "string"},
                    "encoding": {"type": "string"},
                },
            },
        },
    },
}
"""Subset of the cloud-config schema covering the modules we generate"""

PUBLIC_KEY = b"ssh-rsa AAAAB3NzaC1yc2E ollama-machine-demo\n"


def parse(rendered: bytes) -> dict:
    text = rendered.decode("utf8")
    assert text.startswith("#cloud-config\n")
    data = yaml.safe_load(text)
    jsonschema.validate(data, SCHEMA)
    return data


class TestConfig:
    def test_empty_fields_omitted(self) -> None:
        config = cloudinit.Config()
        config.add_runcmd(["echo", "hi"])

        data = parse(config.render())

        assert data == {"runcmd": [["echo", "hi"]]}

    def test_empty_document(self) -> None:
        assert cloudinit.Config().render() == b"#cloud-config\n{}\n"

    def test_runcmd_order_kept(self) -> None:
        config = cloudinit.Config()
        for i in range(5):
            config.add_runcmd(["sh", "-c", f"echo {i}"])

        data = parse(config.render())

        assert [c[2] for c in data["runcmd"]] == [f"echo {i}" for i in range(5)]

    def test_user_and_files(self) -> None:
        config = cloudinit.Config(hostname="demo")
        config.add_ssh_authorized_keys("ssh-ed25519 AAAA first", "ssh-ed25519 AAAA second")
        config.add_user(cloudinit.User(name="someone", shell="/bin/sh"))
        config.add_file(cloudinit.File(path="/etc/motd", content="", permissions="0644"))
        config.add_bootcmd("true")

        data = parse(config.render())

        assert data["hostname"] == "demo"
        assert data["ssh_authorized_keys"] == ["ssh-ed25519 AAAA first", "ssh-ed25519 AAAA second"]
        assert data["users"] == [{"name": "someone", "shell": "/bin/sh"}]
        # Path and content are always present, even if empty
        assert data["write_files"] == [
            {"path": "/etc/motd", "content": "", "permissions": "0644"}
        ]
        assert data["bootcmd"] == ["true"]


class TestGenerate:
    @pytest.mark.parametrize(
        "strategy", [PrivateConnectivity(), PublicConnectivity(), TailscaleConnectivity("tskey-1")]
    )
    def test_valid_document(self, strategy) -> None:
        data = parse(generate_cloud_init(strategy, PUBLIC_KEY).render())

        user = data["users"][0]
        assert user["name"] == "ollama-machine"
        assert user["sudo"] == "ALL=(ALL) NOPASSWD:ALL"
        assert user["ssh_authorized_keys"] == ["ssh-rsa AAAAB3NzaC1yc2E ollama-machine-demo"]
        assert data["write_files"][0]["path"] == OLLAMA_SERVICE_OVERRIDE_PATH
        assert "EnvironmentFile=/home/ollama-machine/env" in data["write_files"][0]["content"]

    def test_connectivity_before_install(self) -> None:
        data = parse(generate_cloud_init(PrivateConnectivity(), PUBLIC_KEY).render())

        commands = [c[-1] for c in data["runcmd"]]
        assert commands == [
            'echo "OLLAMA_HOST=localhost" > /home/ollama-machine/env',
            "curl -fsSL https://ollama.com/install.sh | sh",
            "sudo systemctl start ollama",
        ]

    def test_tailscale_commands_first(self) -> None:
        data = parse(generate_cloud_init(TailscaleConnectivity("tskey-1"), PUBLIC_KEY).render())

        commands = [c[-1] for c in data["runcmd"]]
        assert len(commands) == 6
        assert "tailscale.com/install.sh" in commands[0]
        assert commands[2] == "tailscale up --auth-key=tskey-1"
        assert commands[-1] == "sudo systemctl start ollama"
