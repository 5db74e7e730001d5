"""Android Frida interceptor: the service layer used by plugin hosts and the CLI."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fridactl.core.config import Settings, load_settings
from fridactl.core.discovery import SingleFlight
from fridactl.core.errors import FridactlError, UnknownActionError
from fridactl.core.hosts import discover_hosts
from fridactl.core.model import (
    Action,
    ActiveInterception,
    Host,
    InterceptAction,
    LaunchAction,
    LaunchedServer,
    SetupAction,
    Target,
    parse_action,
)
from fridactl.core.provisioning import (
    intercept_target,
    launch_host,
    list_targets,
    setup_host,
    stop_interception,
    stop_server,
)
from fridactl.transports.base import DeviceBridge, InstrumentationConnector, ServerProvider

LOGGER = logging.getLogger(__name__)


class AndroidFridaInterceptor:
    id = "android-frida"
    version = "1.0.0"

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        bridge: DeviceBridge | None = None,
        connector: InstrumentationConnector | None = None,
        server_provider: ServerProvider | None = None,
        cert_content: str | None = None,
    ) -> None:
        if settings is None:
            loaded = load_settings()
            settings = loaded.settings
            self.load_warnings = loaded.warnings
        else:
            self.load_warnings = ()
        self.settings = settings

        if bridge is None:
            from fridactl.transports.adb import AdbBridge

            bridge = AdbBridge(host=settings.adb_host, port=settings.adb_port)
        if connector is None:
            from fridactl.transports.frida_session import FridaConnector

            connector = FridaConnector()
        if server_provider is None:
            from fridactl.transports.server_download import FridaServerDownloader

            server_provider = FridaServerDownloader(url_template=settings.download_url)

        self.bridge = bridge
        self.connector = connector
        self.server_provider = server_provider
        self._cert_content = cert_content

        # Concurrent lookups all share one discovery run.
        self._discover = SingleFlight(lambda: discover_hosts(self.bridge))
        self.servers: dict[str, LaunchedServer] = {}
        self.interceptions: dict[tuple[str, str], ActiveInterception] = {}

    @property
    def activable_timeout_s(self) -> float:
        return self.settings.activation_timeout_s

    async def list_hosts(self) -> list[Host]:
        return await self._discover()

    async def is_activatable(self) -> bool:
        return len(await self.list_hosts()) > 0

    def is_active(self, proxy_port: int) -> bool:
        return any(i.proxy_port == proxy_port for i in self.active_interceptions())

    async def get_metadata(self, kind: str = "summary") -> dict[str, list[Host]]:
        return {"hosts": await self.list_hosts()}

    async def get_sub_metadata(self, host_id: str) -> dict[str, list[Target]]:
        return {"targets": await list_targets(self.bridge, self.connector, host_id)}

    async def activate(self, proxy_port: int, action: Action | Mapping[str, Any]) -> None:
        if isinstance(action, Mapping):
            action = parse_action(action)

        if isinstance(action, SetupAction):
            await setup_host(
                self.bridge,
                action.host_id,
                self.server_provider,
                version=self.settings.server_version,
            )
        elif isinstance(action, LaunchAction):
            previous = self.servers.pop(action.host_id, None)
            if previous is not None:
                await self._stop_server(previous)
            self.servers[action.host_id] = await launch_host(
                self.bridge,
                action.host_id,
                interval_s=self.settings.poll_interval_s,
                max_attempts=self.settings.poll_attempts,
            )
        elif isinstance(action, InterceptAction):
            await self._intercept(proxy_port, action)
        else:
            raise UnknownActionError(f"Unknown Frida interception command: {action!r}")

    async def _intercept(self, proxy_port: int, action: InterceptAction) -> None:
        cert_content = self._cert_content
        if cert_content is None:
            cert_content = self.settings.read_certificate()

        interception = await intercept_target(
            self.bridge,
            self.connector,
            action.host_id,
            action.target_id,
            cert_content=cert_content,
            proxy_port=proxy_port,
            proxy_host=self.settings.proxy_host,
        )
        previous = self.interceptions.get(interception.key)
        self.interceptions[interception.key] = interception
        if previous is not None:
            await self._stop_interception(previous)

    def active_interceptions(self) -> list[ActiveInterception]:
        # Target processes that exited on their own are no longer intercepted.
        return [i for i in self.interceptions.values() if not i.detached.is_set()]

    async def wait_for_server(self, host_id: str) -> None:
        server = self.servers.get(host_id)
        if server is not None and server.output_task is not None:
            await server.output_task

    async def wait_for_interception(self, host_id: str, target_id: str) -> None:
        interception = self.interceptions.get((host_id, target_id))
        if interception is not None:
            await interception.detached.wait()

    async def deactivate(self, proxy_port: int) -> None:
        for key, interception in list(self.interceptions.items()):
            if interception.proxy_port == proxy_port:
                self.interceptions.pop(key, None)
                await self._stop_interception(interception)

    async def deactivate_all(self) -> None:
        for key in list(self.interceptions):
            await self._stop_interception(self.interceptions.pop(key))

        for server in list(self.servers.values()):
            await self._stop_server(server)
        self.servers.clear()

    async def _stop_interception(self, interception: ActiveInterception) -> None:
        if interception.reverse_port is not None and any(
            other is not interception
            and other.host_id == interception.host_id
            and other.reverse_port == interception.reverse_port
            for other in self.interceptions.values()
        ):
            # Another tracked interception still routes through this tunnel.
            interception.reverse_port = None
        try:
            await stop_interception(self.bridge, interception)
        except FridactlError as exc:
            LOGGER.warning(
                "Failed to stop interception of %s on %s: %s",
                interception.target_id,
                interception.host_id,
                exc,
            )

    async def _stop_server(self, server: LaunchedServer) -> None:
        try:
            await stop_server(self.bridge, server)
        except FridactlError as exc:
            LOGGER.warning("Failed to stop Frida server on %s: %s", server.host_id, exc)
