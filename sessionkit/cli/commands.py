"""CLI commands for SessionKit.

This module provides all command-line interface commands using Typer.
"""

import asyncio
import threading
import time
from typing import Optional

import typer
from rich.panel import Panel

from sessionkit.core import (
    AppConfig,
    CredentialFetcher,
    RecordingObserver,
    RecordingState,
    SessionClient,
    SessionLogger,
    SimulatedEngine,
)
from sessionkit.core.errors import (
    ConfigurationError,
    EngineStartError,
    RecordingError,
    RefreshFailedError,
)
from sessionkit.core.events import (
    AllUploadsFinished,
    InterruptionReason,
    RecordingUploaded,
    UploadEvent,
    UploadFailed,
)
from sessionkit.core.metadata import AppMetadata
from sessionkit.cli.utils import console, configure_logging, make_info_table, make_level_progress

app = typer.Typer(help="Credential and recording session tools for the capture/upload engine")

app_config = AppConfig()

DEMO_PARTNER_ID = "sessionkit-demo"


def _mask(token: str) -> str:
    if len(token) <= 12:
        return "*" * len(token)
    return f"{token[:6]}…{token[-4:]}"


class _ConsoleObserver(RecordingObserver):
    """Prints controller notifications."""

    def on_state_changed(self, previous: RecordingState, current: RecordingState) -> None:
        console.print(f"[info]● {previous.value} → {current.value}[/info]")

    def on_start_failed(self, session_identifier: str, reason: str) -> None:
        console.print(f"[error]✗ Failed to start recording on {session_identifier}: {reason}[/error]")

    def on_recording_stopped(self, recording_identifier: str, duration: float) -> None:
        console.print(f"[success]✓ Recording {recording_identifier} stopped after {duration:.1f}s[/success]")

    def on_interrupted(self, reason: InterruptionReason) -> None:
        console.print(f"[warning]⚠ Recording interrupted: {reason.value}[/warning]")

    def on_duration_warning(self, time_left: float) -> None:
        console.print(f"[warning]⏳ Recording will stop in {time_left:.0f} seconds[/warning]")

    def on_digital_silence(self) -> None:
        console.print("[warning]🔇 Digital silence detected[/warning]")

    def on_error(self, error: RecordingError) -> None:
        console.print(f"[error]✗ {error}[/error]")


@app.command()
def token(
    show: bool = typer.Option(False, "--show", help="Print the full bearer token instead of a masked one"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Fetch one bearer token with the configured client credentials."""
    configure_logging(verbose)

    auth_conf = app_config.get_auth_config()
    if not auth_conf:
        console.print("[error]✗ Token endpoint not configured (add an `auth` section to .sessionkit.yml)[/error]")
        raise typer.Exit(1)

    try:
        fetcher = CredentialFetcher.from_dict(auth_conf)
    except ConfigurationError as e:
        console.print(f"[error]✗ Invalid auth configuration: {e}[/error]")
        raise typer.Exit(1)

    try:
        credential = asyncio.run(fetcher.fetch())
    except RefreshFailedError as e:
        console.print(f"[error]✗ Token refresh failed: {e}[/error]")
        raise typer.Exit(1)

    rows = {
        "Endpoint": fetcher.url,
        "Expires": credential.expiry.isoformat(),
        "Token": credential.token if show else _mask(credential.token),
    }
    console.print(Panel(make_info_table(rows), title="[bold]🔑 Access Token[/bold]", border_style="green"))


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Show application metadata, engine settings and token endpoint health.

    When an ``auth`` section is present in ``.sessionkit.yml`` the command
    fetches one token to check that the endpoint accepts the credentials.
    """
    configure_logging(verbose)

    console.rule("[bold]📋 SessionKit Status[/bold]")
    console.print()

    metadata = AppMetadata.detect(app_config.get_app_config())
    engine_conf = app_config.get_engine_config()
    rows = {
        "App ID": metadata.app_id,
        "App Version": metadata.app_version,
        "Device ID": metadata.device_id,
        "Environment": str(engine_conf["environment"]),
        "Partner ID": str(engine_conf.get("partner_id") or "-"),
    }
    console.print(Panel(make_info_table(rows), title="[bold]Application[/bold]"))

    auth_conf = app_config.get_auth_config()
    if not auth_conf:
        console.print("[dim]Token endpoint not configured[/dim]")
        return

    try:
        fetcher = CredentialFetcher.from_dict(auth_conf)
    except ConfigurationError as e:
        console.print(f"[error]Invalid token endpoint configuration: {e}[/error]")
        return

    auth_rows = {"Endpoint": fetcher.url, "Audience": str(auth_conf["audience"])}
    console.print(Panel(make_info_table(auth_rows), title="[bold]Authentication[/bold]"))

    try:
        credential = asyncio.run(fetcher.fetch())
        console.print(f"[info]Token endpoint reachable: {fetcher.url} (token valid until {credential.expiry.isoformat()})[/info]")
    except RefreshFailedError as e:
        console.print(f"[warning]Token endpoint not reachable ({fetcher.url}): {e}[/warning]")


@app.command()
def demo(
    session_id: Optional[str] = typer.Option(
        None, help="Session correlation ID. Reusing an ID groups recordings into one document."
    ),
    samples: int = typer.Option(20, help="Number of metering samples to simulate"),
    interval: float = typer.Option(0.1, help="Seconds between metering samples"),
    upload: bool = typer.Option(
        True,
        "--upload/--no-upload",
        help="Simulate an upload (requests a real token) after the recording stops.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Run one recording against the simulated engine."""
    configure_logging(verbose)

    engine_section = dict(app_config.get("engine") or {})
    if not engine_section.get("partner_id"):
        engine_section["partner_id"] = DEMO_PARTNER_ID
        app_config.set("engine", engine_section)

    log_path = app_config.get_log_path()
    engine = SimulatedEngine(upload=upload)
    try:
        client = SessionClient(engine, app_config, session_logger=SessionLogger(log_path))
    except ConfigurationError as e:
        console.print(f"[error]✗ Invalid auth configuration: {e}[/error]")
        raise typer.Exit(1)

    uploads_done = threading.Event()

    def on_upload_event(event: UploadEvent) -> None:
        if isinstance(event, RecordingUploaded):
            console.print(f"[success]☁ Uploaded recording {event.recording_identifier}[/success]")
        elif isinstance(event, UploadFailed):
            console.print(f"[warning]☁ Upload failed ({event.error}); engine will retry[/warning]")
        elif isinstance(event, AllUploadsFinished):
            uploads_done.set()

    with client:
        client.monitor.subscribe(on_upload_event)
        try:
            client.start()
        except EngineStartError as e:
            console.print(f"[error]✗ {e}[/error]")
            raise typer.Exit(1)

        controller = client.controller
        controller.add_observer(_ConsoleObserver())
        session = controller.open_new_session(session_id)

        rows = {
            "Session ID": session.identifier,
            "Environment": str(client.user_settings()["environment"]),
            "Upload": "[green]enabled[/green]" if upload and client.provider else "[yellow]disabled[/yellow]",
            "Log": str(log_path),
        }
        console.print(Panel(make_info_table(rows), title="[bold]🎙 Recording Session[/bold]", border_style="green"))

        try:
            controller.start_recording()
        except RecordingError as e:
            console.print(f"[error]✗ {e}[/error]")
            raise typer.Exit(1)

        if controller.state is RecordingState.RECORDING:
            with make_level_progress() as progress:
                task = progress.add_task("level", total=1.0, level_text="--")
                for _ in range(samples):
                    engine.meter()
                    level = controller.audio_level
                    progress.update(task, completed=level, level_text=f"{level:.2f}")
                    time.sleep(interval)

        controller.stop_recording()

        if upload and client.fetcher is not None:
            if not uploads_done.wait(timeout=client.fetcher.timeout + 5):
                console.print("[warning]Timed out waiting for the simulated upload[/warning]")

    console.print(f"[success]✓ Final state: {controller.state.value} (level {controller.audio_level:.2f})[/success]")
