from __future__ import annotations

import pytest

from fridactl import api
from fridactl.api import AndroidFridaInterceptor, HostState, Settings, UnknownActionError, parse_action


def test_public_names_are_exported() -> None:
    for name in api.__all__:
        assert hasattr(api, name), name


def test_public_parse_action() -> None:
    action = parse_action({"action": "intercept", "hostId": "emulator-5554", "targetId": "com.example.app"})
    assert action == api.InterceptAction(host_id="emulator-5554", target_id="com.example.app")

    with pytest.raises(UnknownActionError):
        parse_action({})


@pytest.mark.asyncio
async def test_public_interceptor_lists_hosts(bridge, connector, provider, device) -> None:
    device.rooted = True
    interceptor = AndroidFridaInterceptor(
        settings=Settings(),
        bridge=bridge,
        connector=connector,
        server_provider=provider,
    )

    metadata = await interceptor.get_metadata()
    assert [(h.id, h.state) for h in metadata["hosts"]] == [("emulator-5554", HostState.SETUP_REQUIRED)]
