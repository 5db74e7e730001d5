"""Stable public API for building tooling on top of fridactl.

This module is the supported integration surface for plugin hosts and other
third-party callers. Avoid importing from private/internal modules unless
intentionally depending on non-stable internals.
"""

from __future__ import annotations

from fridactl.core.config import LoadedSettings, Settings, load_settings
from fridactl.core.errors import (
    AccessDeniedError,
    ActionValidationError,
    ActivationError,
    ConfigLoadError,
    ConfigValidationError,
    DeviceBridgeError,
    FridactlError,
    ReadinessTimeoutError,
    ServerDownloadError,
    ServerLaunchError,
    SessionError,
    UnknownActionError,
    UnknownArchitectureError,
)
from fridactl.core.model import (
    Action,
    ActiveInterception,
    Host,
    HostState,
    InterceptAction,
    LaunchAction,
    LaunchedServer,
    SetupAction,
    Target,
    parse_action,
)
from fridactl.core.service import AndroidFridaInterceptor
from fridactl.transports.base import (
    DeviceBridge,
    DeviceHandle,
    InstrumentationConnector,
    InstrumentationSession,
    ServerProvider,
)

__all__ = [
    "FridactlError",
    "AccessDeniedError",
    "ActivationError",
    "ActionValidationError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceBridgeError",
    "ReadinessTimeoutError",
    "ServerDownloadError",
    "ServerLaunchError",
    "SessionError",
    "UnknownActionError",
    "UnknownArchitectureError",
    "Action",
    "ActiveInterception",
    "Host",
    "HostState",
    "InterceptAction",
    "LaunchAction",
    "LaunchedServer",
    "SetupAction",
    "Target",
    "parse_action",
    "LoadedSettings",
    "Settings",
    "load_settings",
    "DeviceBridge",
    "DeviceHandle",
    "InstrumentationConnector",
    "InstrumentationSession",
    "ServerProvider",
    "AndroidFridaInterceptor",
]
