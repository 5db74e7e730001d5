"""Core data models used across discovery, provisioning, service, and CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Union

from fridactl.core.errors import ActionValidationError, UnknownActionError


class HostState(StrEnum):
    UNAVAILABLE = "unavailable"  # probably not Frida compatible (e.g. not rooted)
    SETUP_REQUIRED = "setup-required"  # probably compatible, server not installed
    LAUNCH_REQUIRED = "launch-required"  # server installed, should work if launched
    AVAILABLE = "available"  # server seems to be running and ready right now


@dataclass(frozen=True)
class Target:
    id: str
    name: str


@dataclass(frozen=True)
class Host:
    id: str
    name: str
    type: str
    state: HostState
    targets: tuple[Target, ...] | None = None


@dataclass(frozen=True)
class DirEntry:
    name: str
    mode: int


@dataclass(frozen=True)
class SetupAction:
    host_id: str


@dataclass(frozen=True)
class LaunchAction:
    host_id: str


@dataclass(frozen=True)
class InterceptAction:
    host_id: str
    target_id: str


Action = Union[SetupAction, LaunchAction, InterceptAction]


def _required(options: Mapping[str, Any], key: str, action: str) -> str:
    value = options.get(key)
    if not isinstance(value, str) or not value:
        raise ActionValidationError(f"Frida '{action}' action requires a '{key}' string")
    return value


def parse_action(options: Mapping[str, Any]) -> Action:
    """Convert the plugin-host wire form (``{"action": ..., "hostId": ...}``) to an action."""
    action = options.get("action")
    if action == "setup":
        return SetupAction(host_id=_required(options, "hostId", action))
    if action == "launch":
        return LaunchAction(host_id=_required(options, "hostId", action))
    if action == "intercept":
        return InterceptAction(
            host_id=_required(options, "hostId", action),
            target_id=_required(options, "targetId", action),
        )
    raise UnknownActionError(f"Unknown Frida interception command: {action or '(none)'}")


@dataclass
class LaunchedServer:
    """A Frida server started on a device by this process."""

    host_id: str
    pid: int | None
    stream: Any
    output_task: asyncio.Task[None] | None = None


@dataclass
class ActiveInterception:
    """A target app spawned with the interception script loaded."""

    host_id: str
    target_id: str
    proxy_port: int
    pid: int
    session: Any
    detached: asyncio.Event = field(default_factory=asyncio.Event)
    errors: list[str] = field(default_factory=list)
    # Set when this interception opened an adb reverse tunnel for the proxy.
    reverse_port: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.host_id, self.target_id)
