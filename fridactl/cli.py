"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from fridactl.core.config import load_settings, with_overrides
from fridactl.core.errors import FridactlError
from fridactl.core.model import InterceptAction, LaunchAction, SetupAction
from fridactl.core.service import AndroidFridaInterceptor

app = typer.Typer(help="Provision Frida on Android devices and intercept their apps")

# Setup and launch don't involve the proxy.
_NO_PROXY_PORT = 0


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_interceptor(**overrides: object) -> AndroidFridaInterceptor:
    loaded = load_settings()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return AndroidFridaInterceptor(settings=with_overrides(loaded.settings, **overrides))


async def _run_launch(interceptor: AndroidFridaInterceptor, host: str) -> None:
    await interceptor.activate(_NO_PROXY_PORT, LaunchAction(host_id=host))
    typer.echo(f"Frida server running on {host}. Press Ctrl+C to stop.")
    try:
        await interceptor.wait_for_server(host)
    finally:
        await interceptor.deactivate_all()


async def _run_intercept(
    interceptor: AndroidFridaInterceptor,
    host: str,
    target: str,
    proxy_port: int,
) -> None:
    await interceptor.activate(proxy_port, InterceptAction(host_id=host, target_id=target))
    typer.echo(f"Intercepting {target} on {host} via proxy port {proxy_port}. Press Ctrl+C to stop.")
    try:
        await interceptor.wait_for_interception(host, target)
        typer.echo(f"{target} exited")
    finally:
        await interceptor.deactivate_all()


@app.command("setup")
def setup(host: str = typer.Argument(..., help="ADB device id")) -> None:
    """Download and install the Frida server on a rooted device."""
    try:
        interceptor = _build_interceptor()
        asyncio.run(interceptor.activate(_NO_PROXY_PORT, SetupAction(host_id=host)))
        typer.echo(f"Frida server installed on {host}")
    except FridactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("launch")
def launch(host: str = typer.Argument(..., help="ADB device id")) -> None:
    """Start the installed Frida server and keep it running until interrupted."""
    try:
        interceptor = _build_interceptor()
        asyncio.run(_run_launch(interceptor, host))
    except KeyboardInterrupt:
        typer.echo("Stopped", err=True)
    except FridactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("targets")
def targets(host: str = typer.Argument(..., help="ADB device id")) -> None:
    """List the apps on a device that can be intercepted."""
    try:
        interceptor = _build_interceptor()
        metadata = asyncio.run(interceptor.get_sub_metadata(host))
        if not metadata["targets"]:
            typer.echo(f"No targets found on {host}")
            return

        for target in metadata["targets"]:
            typer.echo(f"{target.id} {target.name}")
    except FridactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("intercept")
def intercept(
    host: str = typer.Argument(..., help="ADB device id"),
    target: str = typer.Argument(..., help="App package id"),
    proxy_port: int = typer.Option(..., "--proxy-port", help="Port of the intercepting proxy"),
    cert: Path | None = typer.Option(None, "--cert", help="PEM CA certificate the app should trust"),
    proxy_host: str | None = typer.Option(
        None,
        "--proxy-host",
        help="Proxy address as seen from the device (default: reverse-tunnel to this machine)",
    ),
) -> None:
    """Launch an app with the interception script injected."""
    try:
        interceptor = _build_interceptor(certificate_path=cert, proxy_host=proxy_host)
        asyncio.run(_run_intercept(interceptor, host, target, proxy_port))
    except KeyboardInterrupt:
        typer.echo("Stopped", err=True)
    except FridactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
