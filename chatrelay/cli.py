"""chatrelay CLI: command line interface.

Exit codes: 0 on success, 1 on any fatal RelayError (missing
configuration, transport connect failure with no fallback, delivery
failure while waiting, unusable media).
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from typing import Any

import click

from chatrelay import __version__
from chatrelay.config import AppSettings, get_settings, require_twilio
from chatrelay.errors import DeliveryFailed, RelayError

logger = logging.getLogger(__name__)

PROVIDER_CHOICES = click.Choice(["auto", "web", "twilio"], case_sensitive=False)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_settings() -> AppSettings:
    try:
        return get_settings()
    except RelayError as e:
        _abort(e)


def _abort(error: Exception) -> None:
    """Print a one-line error (plus provider details) and exit 1."""
    click.secho(f"Error: {error}", fg="red", err=True)
    if isinstance(error, DeliveryFailed):
        if error.error_code is not None:
            click.echo(f"  code: {error.error_code}", err=True)
        if error.http_status is not None:
            click.echo(f"  http status: {error.http_status}", err=True)
        if error.more_info:
            click.echo(f"  more info: {error.more_info}", err=True)
    raise SystemExit(1)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__, prog_name="chatrelay")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """chatrelay: WhatsApp relay over a linked session or Twilio."""
    _configure_logging(verbose or _load_settings().debug)


# ── Login ────────────────────────────────────────────────────


def _print_pairing_code(code: str) -> None:
    click.secho("Scan this pairing code with WhatsApp (Linked Devices):", bold=True)
    click.echo(code)


@cli.command()
def login() -> None:
    """Link a personal WhatsApp account (session transport)."""
    from chatrelay.app.dependencies import build_session_transport

    settings = _load_settings()

    async def _login():
        transport = build_session_transport(settings, on_pairing_code=_print_pairing_code)
        try:
            return await transport.login()
        finally:
            await transport.close()

    try:
        identity = asyncio.run(_login())
    except RelayError as e:
        _abort(e)

    click.secho(f"✓ Linked as {identity.describe()}", fg="green")


# ── Send ─────────────────────────────────────────────────────


@cli.command()
@click.option("--to", "to", required=True, help="Recipient number in E.164 (+15551234567)")
@click.option("--message", "-m", required=True, help="Message body (caption with --media)")
@click.option("--media", default=None, help="Media URL or local path to attach")
@click.option("--provider", type=PROVIDER_CHOICES, default="auto", show_default=True)
@click.option("--wait", "wait", type=click.FloatRange(min=0), default=None, help="Seconds to wait for delivery (0 = don't)")
@click.option("--poll", "poll", type=float, default=None, help="Seconds between status checks")
@click.option("--dry-run", is_flag=True, help="Print what would be sent and exit")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
def send(
    to: str,
    message: str,
    media: str | None,
    provider: str,
    wait: float | None,
    poll: float | None,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Send one message."""
    from chatrelay.app.dependencies import build_dispatcher, get_credential_store
    from chatrelay.relay import DispatchOutcome, ProviderSelector, parse_preference

    settings = _load_settings()
    wait_seconds = settings.send_wait if wait is None else wait
    poll_seconds = settings.send_poll if poll is None else poll
    if poll_seconds <= 0:
        raise click.BadParameter("must be positive", param_hint="--poll")

    try:
        chosen = ProviderSelector(get_credential_store(settings)).resolve(provider)
    except RelayError as e:
        _abort(e)

    if dry_run:
        plan = {"provider": chosen.value, "to": to, "body": message, "media": media}
        if as_json:
            _echo_json({**plan, "dry_run": True})
        else:
            click.echo(f"[dry-run] provider={chosen.value} to={to}")
            click.echo(f"[dry-run] body: {message}")
            if media:
                click.echo(f"[dry-run] media: {media}")
        return

    dispatcher = build_dispatcher(settings)
    try:
        result = asyncio.run(
            dispatcher.send(
                to,
                message,
                chosen,
                media_url=media,
                wait_seconds=wait_seconds,
                poll_seconds=poll_seconds,
                fallback=parse_preference(provider) is None,
            )
        )
        result.raise_for_status()
    except RelayError as e:
        _abort(e)

    if as_json:
        _echo_json(result.to_dict())
        return

    click.secho(f"✓ Sent via {result.provider.value}. Message id: {result.message_id}", fg="green")
    if result.outcome == DispatchOutcome.DELIVERED:
        click.secho(f"✓ Delivered (status: {result.record.status.value})", fg="green")
    elif result.outcome == DispatchOutcome.TIMED_OUT:
        click.echo(
            f"Timed out after {wait_seconds:g}s waiting for final status; "
            "message may still be in flight."
        )


# ── Relay ────────────────────────────────────────────────────


class _StopRequester:
    """Signal handler that schedules service.stop() and holds the task until it finishes."""

    def __init__(self, loop: asyncio.AbstractEventLoop, service: Any):
        self._loop = loop
        self._service = service
        self.pending: set[asyncio.Task] = set()

    def __call__(self) -> None:
        task = self._loop.create_task(self._service.stop())
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)


@cli.command()
@click.option("--provider", type=PROVIDER_CHOICES, default="auto", show_default=True)
@click.option("--interval", type=float, default=None, help="Poll interval in seconds (twilio)")
@click.option("--lookback", type=click.FloatRange(min=0), default=None, help="Initial lookback in minutes (twilio)")
@click.option("--reply", default=None, help="Static auto-reply text")
def relay(provider: str, interval: float | None, lookback: float | None, reply: str | None) -> None:
    """Relay inbound messages to the auto-responder until interrupted."""
    from chatrelay.app.dependencies import build_relay_service

    settings = _load_settings()
    if interval is not None and interval <= 0:
        raise click.BadParameter("must be positive", param_hint="--interval")

    async def _relay() -> None:
        service = build_relay_service(
            settings,
            reply_text=reply,
            interval=interval,
            lookback_minutes=lookback,
        )
        loop = asyncio.get_running_loop()
        request_stop = _StopRequester(loop, service)
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, request_stop)
            except NotImplementedError:
                pass
        await service.run(provider)

    try:
        asyncio.run(_relay())
    except RelayError as e:
        _abort(e)


# ── Webhook ──────────────────────────────────────────────────


@cli.command()
@click.option("--port", type=int, default=None, help="Listen port")
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--path", "path", default=None, help="Webhook path")
@click.option("--reply", default=None, help="Static auto-reply text")
def webhook(port: int | None, host: str, path: str | None, reply: str | None) -> None:
    """Serve the Twilio inbound webhook with auto-reply."""
    import uvicorn

    from chatrelay.app.dependencies import configure_webhook

    settings = _load_settings()
    overrides: dict[str, Any] = {}
    if port is not None:
        overrides["webhook_port"] = port
    if path is not None:
        overrides["webhook_path"] = path
    if overrides:
        settings = settings.model_copy(update=overrides)

    try:
        require_twilio(settings)
    except RelayError as e:
        _abort(e)

    from chatrelay.app.main import create_app

    configure_webhook(reply)
    app = create_app(settings)
    click.echo(f"Listening for Twilio webhooks on http://{host}:{settings.webhook_port}{settings.webhook_path}")
    uvicorn.run(app, host=host, port=settings.webhook_port, log_level="info")


# ── Status ───────────────────────────────────────────────────


@cli.command()
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--lookback", type=click.FloatRange(min=0), default=240, show_default=True, help="Minutes")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
def status(limit: int, lookback: float, as_json: bool) -> None:
    """Show recent Twilio messages (both directions)."""
    from chatrelay.transports import create_twilio_transport

    settings = _load_settings()
    try:
        transport = create_twilio_transport(settings)
        rows = asyncio.run(transport.list_recent(limit=limit, lookback_minutes=lookback))
    except RelayError as e:
        _abort(e)

    if as_json:
        _echo_json([row.to_dict() for row in rows])
        return

    if not rows:
        click.echo("No messages found.")
        return
    for row in rows:
        created = row.created_at.isoformat() if row.created_at else "?"
        arrow = "<-" if row.direction == "inbound" else "->"
        body = row.body.replace("\n", " ")
        click.echo(
            f"{created} {arrow} {row.from_address} -> {row.to_address} "
            f"[{row.status or '-'}] {body[:120]}"
        )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
