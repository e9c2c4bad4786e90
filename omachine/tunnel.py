"""Local port forwarding to the service of a private machine.

A single SSH connection is opened to the machine. Every connection
accepted on the local port gets its own channel over that connection;
bytes are copied in both directions by two independent threads, so a
slow direction never blocks the other one. A failing forwarded
connection is closed alone; the listener and the other connections keep
running.
"""

from __future__ import annotations

import socket
import socketserver
import threading
from typing import Any, Optional

import omachine.locks
from omachine.context import Context
from omachine.errors import TunnelUnsupported
from omachine.machine import Machine
from omachine.ssh import SSHClient
from omachine.utils import ui
from omachine.utils.config import Settings

BUFFER_SIZE = 32 * 1024


def pipe(src: Any, dst: Any, label: str = "") -> None:
    """Copy from *src* to *dst* until *src* is closed, then half-close *dst*.

    Both ends are socket-like: ``recv``, ``sendall`` and ``shutdown``.
    """
    try:
        while True:
            data = src.recv(BUFFER_SIZE)
            if not data:
                break
            dst.sendall(data)
    except (OSError, ValueError) as exce:
        ui.instance().debug(f"Forwarding {label} stopped: {exce}")
    finally:
        try:
            dst.shutdown(socket.SHUT_WR)
        except (OSError, ValueError):
            pass


def splice(local: Any, remote: Any) -> None:
    """Forward *local* and *remote* to each other; return when both ends closed.

    Both objects are closed on return.
    """
    threads = [
        threading.Thread(
            target=pipe, args=(local, remote, "local to remote"), daemon=True
        ),
        threading.Thread(
            target=pipe, args=(remote, local, "remote to local"), daemon=True
        ),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    for end in (local, remote):
        try:
            end.close()
        except (OSError, ValueError) as exce:
            ui.instance().debug(f"Error closing forwarded connection: {exce}")


class ForwardServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: tuple[str, int], tunnel: Tunnel) -> None:
        self.tunnel = tunnel
        super().__init__(address, ForwardHandler)


class ForwardHandler(socketserver.BaseRequestHandler):
    server: ForwardServer

    def handle(self) -> None:
        tunnel = self.server.tunnel
        ui.instance().info(f"New connection from {self.client_address}")
        try:
            channel = tunnel.open_channel()
        except OSError as exce:
            ui.instance().error(f"Could not reach {tunnel.remote_address()}: {exce}")
            return
        splice(self.request, channel)
        ui.instance().debug(f"Connection from {self.client_address} closed")


class Tunnel:
    """Expose the service of a private machine on a local port."""

    def __init__(
        self,
        machine: Machine,
        local_port: Optional[int] = None,
        bind: Optional[str] = None,
        settings: None | Settings = None,
    ) -> None:
        """
        Args:
            machine: The machine; its connectivity must be private.
            local_port: Port to listen on. Defaults to the service port.
            bind: Address to listen on. Defaults to the loopback.
            settings: SSH and service parameters.
        """
        self.machine = machine
        self.settings = settings if settings is not None else Settings()
        self.local_port = local_port if local_port is not None else self.settings.service_port
        self.bind = bind if bind is not None else self.settings.tunnel_bind

        self.client: None | SSHClient = None
        self.server: None | ForwardServer = None

    def check(self) -> None:
        """Raises: TunnelUnsupported: If the machine is not private."""
        if self.machine.connectivity not in ("private", ""):
            raise TunnelUnsupported(self.machine.name, self.machine.connectivity)

    def remote_address(self) -> tuple[str, int]:
        """Address of the service, as seen from the machine"""
        host = self.machine.service_host or "localhost"
        port = self.machine.service_port or self.settings.service_port
        return host, port

    def open_channel(self) -> Any:
        if self.client is None:
            raise OSError("Tunnel is not open")
        return self.client.open_channel(*self.remote_address())

    def open(self, ctx: None | Context = None) -> None:
        """Connect to the machine and start listening.

        Raises:
            TunnelUnsupported: Before any connection, if the machine is not
                private.
            OSError: If the local port cannot be used.
        """
        self.check()
        self.client = self.machine.ssh_client(self.settings)
        self.client.connect(ctx)
        try:
            self.server = ForwardServer((self.bind, self.local_port), self)
        except OSError:
            self.client.close()
            self.client = None
            raise
        omachine.locks.exit_callbacks.append(self.close)

    def serve_forever(self, ctx: None | Context = None) -> None:
        """Open the tunnel and forward connections until *ctx* is cancelled."""
        ctx = ctx if ctx is not None else Context.background()
        self.open(ctx)
        assert self.server is not None
        host, port = self.server.server_address[:2]
        ui.instance().notice(
            f"Tunnel available on {host}:{port}, "
            f"forwarding to {':'.join(map(str, self.remote_address()))} "
            f"on {self.machine.name}"
        )

        server = self.server
        stop = threading.Event()

        def _watch() -> None:
            while not stop.is_set():
                remaining = ctx.remaining()
                if ctx.cancelled() or (remaining is not None and remaining <= 0):
                    ui.instance().info("Closing tunnel")
                    server.shutdown()
                    return
                stop.wait(0.5)

        watcher = threading.Thread(target=_watch, name="tunnel-watcher", daemon=True)
        watcher.start()
        try:
            server.serve_forever(poll_interval=0.5)
        finally:
            stop.set()
            self.close()

    def close(self) -> None:
        if self.server is not None:
            self.server.server_close()
            self.server = None
        if self.client is not None:
            self.client.close()
            self.client = None
