"""Build the interception script injected into Android targets."""

from __future__ import annotations

import json
from importlib import resources

# Order matters: trust must be in place before the proxy starts receiving traffic.
ANDROID_SCRIPT_FILES = (
    "android-certificate-trust.js",
    "android-proxy-override.js",
)


def _config_prelude(cert_content: str, proxy_host: str, proxy_port: int) -> str:
    return "\n".join(
        [
            f"const CERT_PEM = {json.dumps(cert_content)};",
            f"const PROXY_HOST = {json.dumps(proxy_host)};",
            f"const PROXY_PORT = {int(proxy_port)};",
        ]
    )


def build_android_script(cert_content: str, proxy_host: str, proxy_port: int) -> str:
    script_root = resources.files("fridactl.scripts")
    parts = [_config_prelude(cert_content, proxy_host, proxy_port)]
    for name in ANDROID_SCRIPT_FILES:
        parts.append(script_root.joinpath(name).read_text(encoding="utf-8"))
    return "\n\n".join(parts)
