"""evobridge CLI — run the relay, probe the upstream, inspect config.

Usage:
    evobridge run                         # Serve the bridge (HTTP + browser sockets)
    evobridge diag                        # One-shot upstream connection probe
    evobridge diag --url wss://evo.example --instance acct1
    evobridge config                      # Effective configuration, secrets masked
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import sys
from typing import Optional

import click
import structlog
import uvicorn

from evobridge import __version__
from evobridge.config import Settings, StartupConfigError, check_startup
from evobridge.logging_setup import configure_logging
from evobridge.upstream import build_connect_url, probe

logger = structlog.get_logger()


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when a loop is already running (e.g. CliRunner
    invoked from an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


@click.group()
@click.version_option(version=__version__, prog_name="evobridge")
def main():
    """evobridge — relay Evolution API events to a webhook and browser rooms."""


# ---------------------------------------------------------------------------
# evobridge run
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", help="Bind address (default FRONT_WS_HOST)")
@click.option("--port", type=int, help="Listen port (default PORT / FRONT_WS_PORT)")
def run(host: Optional[str], port: Optional[int]):
    """Connect upstream and serve the browser socket + health endpoints."""
    settings = Settings()
    configure_logging(settings.log_level, settings.log_json)

    try:
        check_startup(settings)
    except StartupConfigError as e:
        if e.exit_code == 0:
            logger.info("evobridge.disabled", reason=str(e))
        else:
            logger.error("evobridge.config_error", error=str(e), exit_code=e.exit_code)
        sys.exit(e.exit_code)

    from evobridge.main import create_asgi_app

    uvicorn.run(
        create_asgi_app(settings),
        host=host or settings.front_ws_host,
        port=port or settings.front_ws_port,
        proxy_headers=settings.trust_proxy,
        forwarded_allow_ips="*" if settings.trust_proxy else None,
        log_config=None,
    )


# ---------------------------------------------------------------------------
# evobridge diag
# ---------------------------------------------------------------------------


@main.command()
@click.option("--url", help="Upstream URL (default EVOLUTION_API_URL)")
@click.option("--instance", help="Instance name (default INSTANCE_NAME)")
@click.option("--global/--per-instance", "global_mode", default=None,
              help="Connect to the global socket instead of /<instance>")
@click.option("--token", help="Auth token sent in the socket.io handshake")
@click.option("--polling/--no-polling", default=False,
              help="Allow long-polling before the websocket upgrade")
@click.option("--timeout", type=float, default=15.0, show_default=True,
              help="Seconds to wait for connect or an explicit error")
def diag(url: Optional[str], instance: Optional[str], global_mode: Optional[bool],
         token: Optional[str], polling: bool, timeout: float):
    """Try a single upstream connection and exit.

    Exit codes: 0 connected, 2 connect_error, 3 timeout, 4 unexpected error.
    """
    settings = Settings()
    configure_logging(settings.log_level, settings.log_json)

    base = url or settings.evolution_api_url
    if not base:
        click.secho("Error: --url required (or set EVOLUTION_API_URL)", fg="red", err=True)
        sys.exit(1)
    if global_mode is None:
        global_mode = settings.websocket_global_events
    connect_url = build_connect_url(
        base, instance if instance is not None else settings.instance_name, global_mode
    )
    token = token if token is not None else settings.upstream_auth_token
    transports = ["polling", "websocket"] if polling else ["websocket"]

    click.echo(f"Diagnostic run: {connect_url}")
    click.echo(f"Options: token={bool(token)} global={global_mode} polling={polling}")

    code = _run(probe(
        connect_url,
        transports=transports,
        auth={"token": token} if token else None,
        timeout=timeout,
    ))
    if code == 0:
        click.secho("Connected.", fg="green")
    else:
        click.secho(f"Connection failed (exit {code}).", fg="red", err=True)
    sys.exit(code)


# ---------------------------------------------------------------------------
# evobridge config
# ---------------------------------------------------------------------------


@main.command("config")
def show_config():
    """Print the effective configuration with secrets masked."""
    settings = Settings()
    data = settings.masked()
    data["connect_url"] = build_connect_url(
        settings.evolution_api_url, settings.instance_name, settings.websocket_global_events
    )
    click.echo(json.dumps(data, indent=2, default=str))


if __name__ == "__main__":
    main()
