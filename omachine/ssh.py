"""SSH key pairs and remote shell access, through ``ssh-keygen(1)`` and ``ssh(1)``.

Important: host keys are not verified. Machines are freshly created by
us, and their host key is unknown until first boot; the connection
options accept any key and never write a ``known_hosts`` file.
"""

from __future__ import annotations

import dataclasses
import itertools
import os
import pathlib
import shutil
import socket
import subprocess
import tempfile
from typing import IO, Optional

from pydantic import BaseModel, ConfigDict, Field

from omachine.context import Context
from omachine.errors import AlreadyExists, CommandFailed, DeadlineExceeded, SSHError
from omachine.utils import ui

KEY_TYPE = "rsa"
KEY_BITS = 4096
KEY_FILE_MODE = 0o600

SSH_TRANSPORT_ERROR = 255
"""Return code of ``ssh(1)`` when the connection itself failed"""


@dataclasses.dataclass
class KeyPair:
    """Contents of a key pair; the private key is PEM encoded."""

    private_key: bytes
    public_key: bytes


class KeyPairFiles(BaseModel):
    """Location of the files of a key pair"""

    model_config = ConfigDict(populate_by_name=True)

    private_key_path: str = Field(alias="privateKeyPath")
    public_key_path: str = Field(alias="publicKeyPath")


def generate_key_pair(
    directory: pathlib.Path, name: str, comment: str = ""
) -> tuple[KeyPair, KeyPairFiles]:
    """Generate a new RSA key pair, stored as ``<directory>/<name>[.pub]``.

    Args:
        directory: Folder where the keys are written. Must exist.
        name: Base name of the files; the machine name.
        comment: Comment appended to the public key.

    Returns:
        The content of the keys and their location.

    Raises:
        FileNotFoundError: If *directory* does not exist.
        NotADirectoryError: If *directory* is not a folder.
        AlreadyExists: If a private key with the same name already exists.
        CommandFailed: If ``ssh-keygen`` fails.
    """
    directory = pathlib.Path(directory)
    if not directory.exists():
        raise FileNotFoundError(f"Key folder {directory} does not exist")
    if not directory.is_dir():
        raise NotADirectoryError(f"Key folder {directory} is not a folder")

    private = (directory / name).absolute()
    public = private.with_name(private.name + ".pub")
    if private.exists():
        raise AlreadyExists(str(private))

    cmd = [
        "ssh-keygen",
        "-t",
        KEY_TYPE,
        "-b",
        str(KEY_BITS),
        "-m",
        "PEM",
        "-C",
        comment,
        "-q",
        "-N",
        "",
        "-f",
        str(private),
    ]
    ui.instance().debug(cmd)
    try:
        subprocess.run(cmd, check=True, capture_output=True, stdin=subprocess.DEVNULL)
    except subprocess.CalledProcessError as exce:
        raise CommandFailed(exce) from exce

    for file in (private, public):
        os.chmod(file, KEY_FILE_MODE)

    return (
        KeyPair(private_key=private.read_bytes(), public_key=public.read_bytes()),
        KeyPairFiles(private_key_path=str(private), public_key_path=str(public)),
    )


def delete_key_pair_files(files: KeyPairFiles) -> list[pathlib.Path]:
    """Remove the files of a key pair. Missing files are ignored.

    Returns:
        The files effectively removed.
    """
    removed: list[pathlib.Path] = []
    for path in (files.private_key_path, files.public_key_path):
        file = pathlib.Path(path)
        try:
            file.unlink()
        except FileNotFoundError:
            ui.instance().info(f"Key file {file} already removed")
            continue
        removed.append(file)
    return removed


@dataclasses.dataclass
class SSHOutput:
    """Structure returned by an SSH invocation.

    ``stdout`` holds the combined output of the remote command, ``stderr``
    is kept empty.
    """

    cmd: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes

    def text(self) -> str:
        """Output decoded, with surrounding whitespace stripped"""
        return self.stdout.decode("utf8", errors="replace").strip(" \n\t")


class Channel:
    """A forwarded TCP stream, carried over an existing SSH connection.

    The object exposes the subset of the socket interface used for
    splicing: ``recv``, ``sendall``, ``shutdown`` and ``close``.
    """

    def __init__(self, process: subprocess.Popen) -> None:
        self.process = process
        assert process.stdin is not None and process.stdout is not None
        self._stdin: IO[bytes] = process.stdin
        self._stdout: IO[bytes] = process.stdout

    def recv(self, bufsize: int) -> bytes:
        return self._stdout.read1(bufsize)  # type: ignore[attr-defined]

    def sendall(self, data: bytes) -> None:
        self._stdin.write(data)
        self._stdin.flush()

    def shutdown(self, how: int = socket.SHUT_WR) -> None:
        """Signal the end of the outgoing stream."""
        if how in (socket.SHUT_WR, socket.SHUT_RDWR) and not self._stdin.closed:
            self._stdin.close()

    def close(self) -> None:
        self.shutdown(socket.SHUT_RDWR)
        if self.process.poll() is None:
            self.process.terminate()
        self.process.wait()
        self._stdout.close()


class SSHClient:
    """Remote shell access to a machine.

    Commands run through a fresh ``ssh(1)`` process each time. For
    long-lived use (the tunnel) call :py:meth:`connect` first: a master
    connection is kept open and every channel is multiplexed over it.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        identity_file: pathlib.Path | str,
        *,
        connect_timeout: int = 10,
        flags: None | list[str] = None,
    ) -> None:
        """
        Args:
            host: Address of the machine.
            port: Port where the SSH daemon listens.
            user: The user to login as.
            identity_file: The private key to authenticate with.
            connect_timeout: Same as ``ssh_config(5)`` ``ConnectTimeout``.
            flags: Extra flags to pass to ``ssh(1)``.
        """
        if not host:
            raise SSHError("Machine has no IP")
        self.host = host
        self.port = port
        self.user = user
        self.identity_file = pathlib.Path(identity_file)
        self.connect_timeout = connect_timeout
        self.flags = [] if flags is None else flags

        self.control_dir: None | pathlib.Path = None
        self.master: None | subprocess.Popen = None

    def __enter__(self) -> SSHClient:
        return self

    def __exit__(self, *_) -> None:
        self.close()

    @property
    def control_path(self) -> Optional[pathlib.Path]:
        if self.control_dir is None:
            return None
        return self.control_dir / "master.sock"

    def connection_opts(self, batch: bool = True) -> list[str]:
        """Generate the list of options (``-o``) required to connect to the machine.

        Returns: A list of string, where each pair of elements is the ``-o`` flag
            followed by an option; ready to be passed to ``ssh(1)``.
        """
        args = [
            "StrictHostKeyChecking=no",
            "UserKnownHostsFile=/dev/null",
            "LogLevel=ERROR",
            f"BatchMode={'yes' if batch else 'no'}",
            f"ConnectTimeout={self.connect_timeout}",
            f"User={self.user}",
            f"Port={self.port}",
            "IdentitiesOnly=yes",
            f"IdentityFile={self.identity_file}",
        ]
        if self.control_path is not None:
            args.append(f"ControlPath={self.control_path}")

        return (
            list(
                itertools.chain.from_iterable(
                    zip(["-o" for _ in range(len(args))], args)
                )
            )
            + self.flags
        )

    def _command(self, *args: str) -> list[str]:
        cmd = ["ssh", *self.connection_opts(), *args]
        if ui.instance().verbose:
            cmd.insert(1, "-v")
        return cmd

    def run(
        self, command: str, check: bool = False, ctx: None | Context = None
    ) -> SSHOutput:
        """Run *command* in the machine and capture the combined output.

        Args:
            command: The command, interpreted by the remote shell.
            check: Raise :py:class:`CommandFailed` if the command fails.
            ctx: If the context has a deadline, the command is killed when
                it is reached.

        Raises:
            ConnectionRefusedError: If the machine refused the connection;
                normal while the machine is booting.
            SSHError: If the connection failed for any other reason.
            DeadlineExceeded: If the context deadline was reached.
        """
        cmd = self._command(self.host, command)
        ui.instance().debug(cmd)
        timeout = ctx.remaining() if ctx is not None else None
        if ctx is not None:
            ctx.check()
        try:
            ret = subprocess.run(
                cmd,
                check=False,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exce:
            raise DeadlineExceeded(f"{command} on {self.host}") from exce
        except OSError as exce:
            raise SSHError(f"Could not execute ssh: {exce}") from exce

        output = SSHOutput(cmd, ret.returncode, ret.stdout or b"", b"")

        if ret.returncode == SSH_TRANSPORT_ERROR:
            message = output.text()
            if "Connection refused" in message:
                raise ConnectionRefusedError(message)
            raise SSHError(f"ssh to {self.user}@{self.host}:{self.port} failed: {message}")

        if check is True and output.returncode != 0:
            raise CommandFailed(output)

        return output

    def is_connected(self) -> bool:
        """Return ``True`` if the master connection is up"""
        if self.master is None or self.master.poll() is not None:
            return False
        ret = subprocess.run(
            self._command("-O", "check", self.host),
            check=False,
            capture_output=True,
            stdin=subprocess.DEVNULL,
        )
        return ret.returncode == 0

    def connect(self, ctx: None | Context = None, interval: float = 0.2) -> None:
        """Open the master connection; channels are multiplexed over it.

        Raises:
            ConnectionRefusedError: If the machine refused the connection.
            SSHError: If the connection could not be established.
        """
        if self.master is not None:
            return
        ctx = ctx if ctx is not None else Context()
        self.control_dir = pathlib.Path(tempfile.mkdtemp(prefix="omachine-"))
        cmd = self._command("-M", "-N", self.host)
        ui.instance().debug(cmd)
        self.master = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        while not self.is_connected():
            if self.master.poll() is not None:
                assert self.master.stderr is not None
                message = self.master.stderr.read().decode("utf8", errors="replace")
                self.close()
                if "Connection refused" in message:
                    raise ConnectionRefusedError(message.strip())
                raise SSHError(f"ssh to {self.host} failed: {message.strip()}")
            try:
                ctx.sleep(interval)
            except BaseException:
                self.close()
                raise
        ui.instance().info(f"Connected to {self.user}@{self.host}:{self.port}")

    def open_channel(self, host: str, port: int) -> Channel:
        """Open a stream to *host*:*port*, as seen from the machine.

        Raises:
            SSHError: If the master connection is not open.
        """
        if self.master is None:
            raise SSHError("Not connected; call connect() first")
        cmd = self._command("-W", f"{host}:{port}", self.host)
        ui.instance().debug(cmd)
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        return Channel(process)

    def close(self) -> None:
        """Close the master connection, if any"""
        if self.master is not None:
            if self.master.poll() is None:
                subprocess.run(
                    self._command("-O", "exit", self.host),
                    check=False,
                    capture_output=True,
                    stdin=subprocess.DEVNULL,
                )
                try:
                    self.master.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    self.master.kill()
                    self.master.wait()
            if self.master.stderr is not None:
                self.master.stderr.close()
            self.master = None
        if self.control_dir is not None:
            shutil.rmtree(self.control_dir, ignore_errors=True)
            self.control_dir = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.user}@{self.host}:{self.port})"
