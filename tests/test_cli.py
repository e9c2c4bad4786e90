from __future__ import annotations

import pathlib

import pytest

import omachine
import omachine.cli
import omachine.cli._utils
import omachine.locks
from omachine.cli._create import parse_tags
from omachine.cli._env import detect_shell, render
from omachine.credentials import CredentialStore
from omachine.machine import Machine


def run(*args: str) -> int:
    with pytest.raises(SystemExit) as exce:
        omachine.cli.run(list(args))
    return exce.value.code


@pytest.fixture
def storage(
    tmp_path: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
    keyring_backend,
    fake_ssh,
) -> pathlib.Path:
    """Point the command line to a temporary storage and an in-memory keyring"""
    base = tmp_path / "cli"
    base.mkdir()
    (base / "settings.yaml").write_text("poll_interval: 0\n")
    monkeypatch.setenv("OLLAMA_MACHINE_STORAGE_PATH", str(base))
    monkeypatch.setattr(omachine.cli._utils, "_configuration", None)
    monkeypatch.setattr(
        omachine.cli._utils, "credential_store", lambda: CredentialStore(keyring_backend)
    )
    monkeypatch.setattr(omachine.locks, "install_signal_handlers", lambda: None)
    monkeypatch.setattr(omachine, "exit_procedure", lambda: None)
    return base


class TestBasic:
    def test_version(self, storage, capsys) -> None:
        assert run("--version") == 0
        assert capsys.readouterr().out.startswith("ollama-machine ")

    def test_version_command(self, storage, capsys) -> None:
        assert run("version") == 0
        out = capsys.readouterr().out
        assert "providers:" in out
        assert "- noop" in out

    def test_nothing(self, storage, capsys) -> None:
        assert run() == 127
        assert "usage" in capsys.readouterr().out

    def test_init_conf(self, storage: pathlib.Path) -> None:
        assert run("init-conf") == 0
        assert (storage / "machines").is_dir()
        assert (storage / "keys").is_dir()

    def test_unknown_machine(self, storage, capsys) -> None:
        assert run("delete", "ghost") == 1
        assert "ghost" in capsys.readouterr().err


class TestCredentials:
    def test_create_list_remove(self, storage, capsys) -> None:
        assert run("credentials", "create", "acct1", "-p", "noop", "--noop-nothing", "x") == 0
        assert run("credentials", "ls") == 0
        out = capsys.readouterr().out
        assert "acct1" in out and "noop" in out

        assert run("credentials", "create", "acct1", "-p", "noop", "--noop-nothing", "y") == 1
        assert "remove it first" in capsys.readouterr().err

        assert run("credentials", "rm", "acct1", "-p", "noop") == 0
        assert run("credentials", "remove", "acct1", "-p", "noop") == 1

    def test_missing_value(self, storage, capsys) -> None:
        assert run("credentials", "create", "acct1", "-p", "aws", "--aws-secret-access-key", "s") == 1
        assert "accessKeyId" in capsys.readouterr().err

    def test_no_action(self, storage) -> None:
        assert run("credentials") == 1


class TestLifecycle:
    def test_full(self, storage, capsys) -> None:
        assert run("credentials", "create", "acct1", "-p", "noop", "--noop-nothing", "x") == 0
        assert run("create", "demo", "-p", "noop", "-c", "acct1", "--tag", "team=ml") == 0
        capsys.readouterr()

        assert run("ls") == 0
        out = capsys.readouterr().out
        assert out.splitlines()[0].split()[:3] == ["NAME", "STATE", "PROVIDER"]
        assert out.splitlines()[1].split() == [
            "demo",
            "running",
            "noop",
            "1.2.3.4",
            "localhost",
            "11434",
        ]

        assert run("env", "demo", "--shell", "fish") == 0
        assert capsys.readouterr().out == 'set -gx OLLAMA_HOST "localhost:11434";\n'

        assert run("stop", "demo") == 0
        assert run("start", "demo") == 0
        assert run("rm", "demo") == 0

        capsys.readouterr()
        assert run("ls") == 0
        assert "demo" not in capsys.readouterr().out
        assert list((storage / "keys").iterdir()) == []

    def test_create_without_credentials(self, storage, capsys) -> None:
        assert run("create", "demo", "-p", "noop", "-c", "nope") == 1
        assert "nope" in capsys.readouterr().err

    def test_tunnel_public(self, storage, capsys) -> None:
        assert run("credentials", "create", "acct1", "-p", "noop", "--noop-nothing", "x") == 0
        assert run("create", "demo", "-p", "noop", "-c", "acct1", "--public") == 0
        capsys.readouterr()

        assert run("tunnel", "demo") == 1
        assert "private connectivity" in capsys.readouterr().err


class TestEnv:
    @pytest.mark.parametrize(
        "shell, expected",
        [
            ("fish", 'set -gx OLLAMA_HOST "localhost:11434";\n'),
            ("powershell", '$Env:OLLAMA_HOST = "localhost:11434"\n'),
            ("cmd", "SET OLLAMA_HOST=localhost:11434\n"),
            ("tcsh", 'setenv OLLAMA_HOST "localhost:11434";\n'),
            ("emacs", '(setenv "OLLAMA_HOST" "localhost:11434")\n'),
            ("bash", 'export OLLAMA_HOST="localhost:11434"\n'),
            ("", 'export OLLAMA_HOST="localhost:11434"\n'),
        ],
    )
    def test_render(self, machine: Machine, shell: str, expected: str) -> None:
        assert render(machine, shell) == expected

    @pytest.mark.parametrize(
        "environ, expected",
        [
            ({"SHELL": "/usr/bin/fish"}, "fish"),
            ({"SHELL": "/bin/zsh"}, "zsh"),
            ({"SHELL": "/usr/local/bin/pwsh"}, "powershell"),
            ({}, ""),
        ],
    )
    def test_detect(self, environ: dict, expected: str) -> None:
        assert detect_shell(environ) == expected


class TestTags:
    def test_parse(self) -> None:
        assert parse_tags(["a=1", "b=x=y", "c="]) == {"a": "1", "b": "x=y", "c": ""}
        assert parse_tags(None) == {}

    @pytest.mark.parametrize("value", ["novalue", "=1"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_tags([value])
