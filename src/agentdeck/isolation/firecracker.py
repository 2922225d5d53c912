"""Firecracker backend: one microVM per agent, driven over its REST socket.

Definition file (YAML or JSON)::

    name: Firecracker
    kernel: {path: ~/.agentdeck/firecracker/vmlinux, boot_args: "console=ttyS0 reboot=k panic=1 pci=off"}
    rootfs: {path: ~/.agentdeck/firecracker/rootfs.ext4, read_only: false}
    memory_mb: 2048
    vcpu_count: 2
    network: {mode: tap, tap_device: fc-tap0, guest_mac: "AA:FC:00:00:00:01"}
    vsock: {enabled: true, port: 52}
    environment: {TERM: xterm-256color}

Relative kernel and rootfs paths resolve against the definition's directory.
Commands reach the guest over vsock: the host connects to the VM's vsock
socket, sends ``CONNECT <port>``, then one JSON request line, and reads a JSON
reply until EOF.  VM state is written to the runtime directory so exec, stats
and destroy keep working after the engine restarts.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shutil
import signal
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import httpx

from agentdeck.errors import CommandError, IsolationError
from agentdeck.isolation.base import DisplayInfo, RuntimeStats, load_definition
from agentdeck.protocol.io import read_json, write_json_atomic
from agentdeck.runner.command import CommandRunner

log = logging.getLogger(__name__)

DEFAULT_BOOT_ARGS = "console=ttyS0 reboot=k panic=1 pci=off"
DEFAULT_GUEST_MAC = "AA:FC:00:00:00:01"
DEFAULT_HOST_IP = "172.16.0.1/24"
DEFAULT_VSOCK_PORT = 52
SOCKET_WAIT = 5.0
SHUTDOWN_GRACE = 2.0
STATE_FILE = "state.json"

ClientFactory = Callable[[str], httpx.AsyncClient]


@dataclass(slots=True)
class FirecrackerDefinition:
    kernel_path: str
    rootfs_path: str
    name: str = "Firecracker"
    description: str = ""
    boot_args: str = DEFAULT_BOOT_ARGS
    rootfs_read_only: bool = False
    memory_mb: int = 2048
    vcpu_count: int = 2
    network_mode: str = "none"
    tap_device: str | None = None
    guest_mac: str = DEFAULT_GUEST_MAC
    host_ip: str = DEFAULT_HOST_IP
    vsock_enabled: bool = True
    vsock_cid: int | None = None
    vsock_port: int = DEFAULT_VSOCK_PORT
    environment: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> FirecrackerDefinition:
        kernel = data.get("kernel") or {}
        rootfs = data.get("rootfs") or {}
        if not isinstance(kernel, dict) or not kernel.get("path"):
            raise IsolationError("Definition needs kernel.path", backend="firecracker")
        if not isinstance(rootfs, dict) or not rootfs.get("path"):
            raise IsolationError("Definition needs rootfs.path", backend="firecracker")
        network = data.get("network") or {}
        vsock = data.get("vsock") or {}
        mode = str(network.get("mode", "none"))
        if mode not in ("none", "tap"):
            raise IsolationError(f"Unsupported network mode: {mode}", backend="firecracker")
        if mode == "tap" and not network.get("tap_device"):
            raise IsolationError("network.tap_device is required for tap mode", backend="firecracker")
        cid = vsock.get("cid")
        return cls(
            name=str(data.get("name") or "Firecracker"),
            description=str(data.get("description", "")),
            kernel_path=_resolve(str(kernel["path"]), base_dir),
            boot_args=str(kernel.get("boot_args") or DEFAULT_BOOT_ARGS),
            rootfs_path=_resolve(str(rootfs["path"]), base_dir),
            rootfs_read_only=bool(rootfs.get("read_only", False)),
            memory_mb=int(data.get("memory_mb", 2048)),
            vcpu_count=int(data.get("vcpu_count", 2)),
            network_mode=mode,
            tap_device=str(network["tap_device"]) if network.get("tap_device") else None,
            guest_mac=str(network.get("guest_mac") or DEFAULT_GUEST_MAC),
            host_ip=str(network.get("host_ip") or DEFAULT_HOST_IP),
            vsock_enabled=bool(vsock.get("enabled", True)),
            vsock_cid=int(cid) if cid is not None else None,
            vsock_port=int(vsock.get("port", DEFAULT_VSOCK_PORT)),
            environment={str(k): str(v) for k, v in (data.get("environment") or {}).items()},
        )


@dataclass(slots=True)
class VmState:
    """What destroy/exec/stats need, persisted as ``state.json``."""

    runtime_id: str
    runtime_dir: str
    api_socket: str
    pid: int | None = None
    vsock_socket: str | None = None
    vsock_port: int = DEFAULT_VSOCK_PORT
    tap_device: str | None = None
    environment: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VmState:
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


def _resolve(path: str, base_dir: Path | None) -> str:
    target = Path(path).expanduser()
    if not target.is_absolute() and base_dir is not None:
        target = base_dir / target
    return str(target)


def read_rss_mb(pid: int, proc_root: Path = Path("/proc")) -> float | None:
    """Resident set size of *pid* in MB, from ``/proc/<pid>/stat``."""
    try:
        text = (proc_root / str(pid) / "stat").read_text()
    except OSError:
        return None
    # comm (field 2) may contain spaces; fields after it start at field 3
    fields = text.rsplit(")", 1)[-1].split()
    try:
        pages = int(fields[21])
    except (IndexError, ValueError):
        return None
    return round(pages * os.sysconf("SC_PAGE_SIZE") / (1024 * 1024), 1)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _default_client(socket_path: str) -> httpx.AsyncClient:
    transport = httpx.AsyncHTTPTransport(uds=socket_path)
    return httpx.AsyncClient(transport=transport, base_url="http://localhost", timeout=10.0)


class FirecrackerAdapter:
    type = "firecracker"

    def __init__(
        self,
        runner: CommandRunner,
        *,
        binary: str = "firecracker",
        runtime_root: str | Path = "/tmp",
        client_factory: ClientFactory | None = None,
        exec_timeout: float = 60.0,
        proc_root: Path = Path("/proc"),
    ) -> None:
        self._runner = runner
        self._binary = binary
        self._runtime_root = Path(runtime_root)
        self._client_factory = client_factory or _default_client
        self._exec_timeout = exec_timeout
        self._proc_root = proc_root
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    # ------------------------------------------------------------------
    # Capability checks
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        if shutil.which(self._binary) is None:
            return False
        if not os.path.exists("/dev/kvm"):
            log.debug("KVM not available (/dev/kvm missing)")
            return False
        if not os.access("/dev/kvm", os.R_OK | os.W_OK):
            log.debug("KVM not accessible (check permissions on /dev/kvm)")
            return False
        return True

    def load(self, definition_path: str | None) -> FirecrackerDefinition:
        if not definition_path:
            raise IsolationError("Firecracker isolation requires a definition file", backend=self.type)
        data = load_definition(definition_path, self.type)
        return FirecrackerDefinition.from_dict(data, Path(definition_path).expanduser().parent)

    async def get_display_info(self, definition_path: str | None) -> DisplayInfo:
        definition = self.load(definition_path)
        return DisplayInfo(
            name=definition.name,
            description=definition.description,
            memory_limit=f"{definition.memory_mb}MB",
            cpu_limit=f"{definition.vcpu_count} vCPU",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def runtime_dir(self, runtime_id: str) -> Path:
        return self._runtime_root / f"firecracker-{runtime_id}"

    async def create(self, definition_path: str | None, worktree_path: str, agent_id: int) -> str:
        definition = self.load(definition_path)
        for label, path in (("kernel", definition.kernel_path), ("rootfs", definition.rootfs_path)):
            if not Path(path).is_file():
                raise IsolationError(f"Firecracker {label} not found: {path}", backend=self.type)

        runtime_id = f"fc-vm-{agent_id}"
        runtime_dir = self.runtime_dir(runtime_id)
        runtime_dir.mkdir(parents=True, exist_ok=True)
        api_socket = runtime_dir / "firecracker.socket"
        api_socket.unlink(missing_ok=True)

        state = VmState(
            runtime_id=runtime_id,
            runtime_dir=str(runtime_dir),
            api_socket=str(api_socket),
            vsock_socket=str(runtime_dir / "vsock.socket") if definition.vsock_enabled else None,
            vsock_port=definition.vsock_port,
            tap_device=definition.tap_device if definition.network_mode == "tap" else None,
            environment=definition.environment,
        )

        self._save_state(state)
        try:
            if state.tap_device:
                await self._setup_tap(state.tap_device, definition.host_ip)
            process = await self._runner.spawn(
                [self._binary, "--api-sock", state.api_socket, "--id", runtime_id]
            )
            self._processes[runtime_id] = process
            state.pid = process.pid
            self._save_state(state)
            await self._wait_for_socket(api_socket)
            await self._configure(state, definition, agent_id)
            await self._api(state, "/actions", {"action_type": "InstanceStart"})
        except (CommandError, IsolationError, httpx.HTTPError, OSError) as exc:
            log.warning("Firecracker VM %s failed to start: %s", runtime_id, exc)
            await self.destroy(runtime_id)
            if isinstance(exc, IsolationError):
                raise
            raise IsolationError(f"Failed to start Firecracker VM: {exc}", backend=self.type) from exc

        log.info("Firecracker VM %s started for agent %d (worktree %s)", runtime_id, agent_id, worktree_path)
        return runtime_id

    async def _configure(self, state: VmState, definition: FirecrackerDefinition, agent_id: int) -> None:
        await self._api(state, "/boot-source", {
            "kernel_image_path": definition.kernel_path,
            "boot_args": definition.boot_args,
        })
        await self._api(state, "/machine-config", {
            "vcpu_count": definition.vcpu_count,
            "mem_size_mib": definition.memory_mb,
        })
        await self._api(state, "/drives/rootfs", {
            "drive_id": "rootfs",
            "path_on_host": definition.rootfs_path,
            "is_root_device": True,
            "is_read_only": definition.rootfs_read_only,
        })
        if state.tap_device:
            await self._api(state, "/network-interfaces/eth0", {
                "iface_id": "eth0",
                "guest_mac": definition.guest_mac,
                "host_dev_name": state.tap_device,
            })
        if state.vsock_socket:
            # guest CIDs 0-2 are reserved
            cid = definition.vsock_cid if definition.vsock_cid is not None else 3 + agent_id
            await self._api(state, "/vsock", {"guest_cid": cid, "uds_path": state.vsock_socket})

    async def exec(self, runtime_id: str, command: str) -> str:
        state = self._load_state(runtime_id)
        if state is None:
            raise IsolationError(f"VM not found: {runtime_id}", backend=self.type)
        if not state.vsock_socket:
            raise IsolationError(f"vsock not enabled for VM {runtime_id}", backend=self.type)
        try:
            return await asyncio.wait_for(self._vsock_exec(state, command), self._exec_timeout)
        except asyncio.TimeoutError as exc:
            raise IsolationError(f"Command timed out in VM {runtime_id}", backend=self.type) from exc
        except OSError as exc:
            raise IsolationError(f"vsock connection failed: {exc}", backend=self.type) from exc

    async def _vsock_exec(self, state: VmState, command: str) -> str:
        reader, writer = await asyncio.open_unix_connection(state.vsock_socket)
        try:
            writer.write(f"CONNECT {state.vsock_port}\n".encode())
            await writer.drain()
            ack = (await reader.readline()).decode().strip()
            if not ack.startswith("OK"):
                raise IsolationError(f"vsock handshake rejected: {ack or 'no reply'}", backend=self.type)
            request = {"type": "exec", "command": command, "env": state.environment}
            writer.write((json.dumps(request) + "\n").encode())
            await writer.drain()
            raw = (await reader.read()).decode()
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

        try:
            response = json.loads(raw)
        except json.JSONDecodeError:
            return raw
        if not isinstance(response, dict):
            return raw
        if response.get("error"):
            raise IsolationError(str(response["error"]), backend=self.type)
        return str(response.get("output", ""))

    async def destroy(self, runtime_id: str) -> None:
        state = self._load_state(runtime_id)
        if state is None:
            log.debug("VM %s not found, may already be destroyed", runtime_id)
            return

        if Path(state.api_socket).exists():
            try:
                await self._api(state, "/actions", {"action_type": "SendCtrlAltDel"})
            except (httpx.HTTPError, IsolationError) as exc:
                log.debug("Graceful shutdown of %s failed: %s", runtime_id, exc)
            else:
                await self._wait_exit(state.pid, SHUTDOWN_GRACE)

        if state.pid is not None and _pid_alive(state.pid):
            with contextlib.suppress(ProcessLookupError):
                os.kill(state.pid, signal.SIGKILL)
        process = self._processes.pop(runtime_id, None)
        if process is not None:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(process.wait(), SHUTDOWN_GRACE)

        if state.tap_device:
            try:
                await self._runner.run(["sudo", "ip", "link", "delete", state.tap_device], timeout=10, check=False)
            except CommandError as exc:
                log.debug("TAP cleanup for %s failed: %s", runtime_id, exc)

        shutil.rmtree(state.runtime_dir, ignore_errors=True)
        log.info("Firecracker VM %s destroyed", runtime_id)

    async def get_stats(self, runtime_id: str) -> RuntimeStats | None:
        state = self._load_state(runtime_id)
        if state is None or state.pid is None:
            return None
        rss = read_rss_mb(state.pid, self._proc_root)
        if rss is None:
            return None
        # CPU would need sampling over time
        return RuntimeStats(memory_mb=rss, cpu_percent=0.0)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _api(self, state: VmState, path: str, body: dict[str, Any]) -> None:
        async with self._client_factory(state.api_socket) as client:
            response = await client.put(path, json=body)
        if response.status_code >= 300:
            raise IsolationError(
                f"Firecracker API error on {path}: {response.status_code} {response.text}",
                backend=self.type,
            )

    async def _wait_for_socket(self, socket_path: Path, timeout: float = SOCKET_WAIT) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if socket_path.exists():
                return
            await asyncio.sleep(0.05)
        raise IsolationError(f"Firecracker socket not available after {timeout}s", backend=self.type)

    async def _wait_exit(self, pid: int | None, timeout: float) -> None:
        if pid is None:
            return
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline and _pid_alive(pid):
            await asyncio.sleep(0.1)

    async def _setup_tap(self, device: str, host_ip: str) -> None:
        for args in (
            ["sudo", "ip", "tuntap", "add", "dev", device, "mode", "tap"],
            ["sudo", "ip", "addr", "add", host_ip, "dev", device],
            ["sudo", "ip", "link", "set", device, "up"],
        ):
            await self._runner.run(args, timeout=10)

    def _save_state(self, state: VmState) -> None:
        write_json_atomic(Path(state.runtime_dir) / STATE_FILE, asdict(state))

    def _load_state(self, runtime_id: str) -> VmState | None:
        data = read_json(self.runtime_dir(runtime_id) / STATE_FILE, None)
        if not isinstance(data, dict):
            return None
        try:
            return VmState.from_dict(data)
        except TypeError:
            log.warning("Corrupt Firecracker state for %s", runtime_id)
            return None
