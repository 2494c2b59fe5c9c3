"""
Nudge CLI entry point.

Commands:
    nudge run        start the tick driver until interrupted
    nudge tick       run one hourly / quarter-hour pass now
    nudge debug      diagnose why notifications are not arriving
    nudge backfill   store real UTC hours for legacy daily check-ins
    nudge send-test  push the test notification to one subscriber
"""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="nudge",
    help="Nudge — scheduled push-notification delivery engine.",
    add_completion=False,
)

console = Console()


def _load_config():
    from nudge.core.config import NudgeConfig
    from nudge.core.errors import ConfigError

    try:
        return NudgeConfig.load()
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _setup_logging(config, verbose: bool) -> logging.Logger:
    from nudge.core.logging import level_from_name, setup_logging

    console_level = logging.DEBUG if verbose else level_from_name(config.logging.level)
    setup_logging(log_dir=config.get_log_dir(), console_level=console_level)
    return logging.getLogger("nudge")


def _build_engine(config):
    """Stores + Web Push dispatcher + tick driver from config."""
    from nudge.core.errors import TransportError
    from nudge.notifications.payloads import Branding
    from nudge.notifications.webpush import WebPushSender
    from nudge.scheduler.dispatcher import Dispatcher
    from nudge.scheduler.engine import TickDriver
    from nudge.scheduler.triggers import make_trigger
    from nudge.store.factory import build_stores

    try:
        sender = WebPushSender(config.push)
    except TransportError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    stores = build_stores(config)
    dispatcher = Dispatcher(
        stores,
        sender,
        branding=Branding(
            title=config.push.app_title, icon=config.push.icon, badge=config.push.badge
        ),
        max_concurrent_sends=config.scheduler.max_concurrent_sends,
        remove_gone_subscribers=config.push.remove_gone_subscribers,
    )
    driver = TickDriver(
        stores,
        dispatcher,
        hourly_trigger=make_trigger({"type": "cron", "expression": config.scheduler.hourly_cron}),
        quarter_hour_trigger=make_trigger(
            {"type": "cron", "expression": config.scheduler.quarter_hour_cron}
        ),
    )
    return stores, dispatcher, driver


@app.command()
def run(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run the scheduler until interrupted."""
    config = _load_config()
    logger = _setup_logging(config, verbose)
    if not config.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled in configuration.[/yellow]")
        raise typer.Exit(0)
    stores, _, driver = _build_engine(config)

    async def _main() -> None:
        await stores.initialize()
        await driver.start()
        console.print("[green]Scheduler running.[/green] [dim]Ctrl+C to stop.[/dim]")
        try:
            await asyncio.Event().wait()
        finally:
            await driver.stop()
            await stores.close()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Interrupted, scheduler stopped")


@app.command()
def tick(
    kind: str = typer.Argument(..., help="'hourly' or 'quarter'"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run one delivery pass now."""
    if kind not in ("hourly", "quarter"):
        console.print("[red]kind must be 'hourly' or 'quarter'[/red]")
        raise typer.Exit(2)
    config = _load_config()
    _setup_logging(config, verbose)
    stores, _, driver = _build_engine(config)

    async def _main():
        await stores.initialize()
        try:
            if kind == "hourly":
                return await driver.run_hourly_pass()
            return await driver.run_quarter_hour_pass()
        finally:
            await stores.close()

    report = asyncio.run(_main())
    for stats in report.stats:
        console.print(
            f"{stats.queue}: selected={stats.selected} sent={stats.sent} "
            f"failed={stats.failed} skipped={stats.skipped}"
        )
    if not report.ok:
        console.print(f"[red]Pass aborted: {report.error}[/red]")
        raise typer.Exit(1)


@app.command()
def debug() -> None:
    """Check configuration, subscriptions and pending notifications."""
    config = _load_config()
    asyncio.run(_run_debug(config))


async def _run_debug(config) -> None:
    from nudge.core.types import QueueKind, utcnow
    from nudge.scheduler.selector import (
        every_other_day_gate,
        select_daily_checkin_targets,
        target_utc_hour,
    )
    from nudge.store.factory import build_stores

    issues: list[str] = []

    console.print(Panel("[bold]1. Push configuration[/bold]", border_style="cyan"))
    for label, value in (
        ("VAPID_PUBLIC_KEY", config.push.vapid_public_key),
        ("VAPID_PRIVATE_KEY", config.push.vapid_private_key),
        ("VAPID_SUBJECT", config.push.vapid_subject),
    ):
        if value:
            shown = "****" if label == "VAPID_PRIVATE_KEY" else f"{value[:20]}..."
            console.print(f"[green]✓[/green] {label}: set ({shown})")
        else:
            console.print(f"[red]✗[/red] {label}: NOT SET")
            issues.append(f"{label} is not set")

    console.print(Panel("[bold]2. Store[/bold]", border_style="cyan"))
    stores = build_stores(config)
    try:
        await stores.initialize()
        subscriptions = await stores.subscriptions.list_all()
        now = utcnow()
        due_followups = await stores.followups.list_due(now)
        due_checkins = await stores.active_checkins.list_due(now)
    except Exception as e:
        console.print(f"[red]Store error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await stores.close()
    console.print(f"{config.store.backend} store at {config.get_store_path()}")
    console.print(f"Total subscriptions: {len(subscriptions)}")

    if not subscriptions:
        issues.append("No subscriptions, no client has enabled notifications yet")
    else:
        table = Table(title="3. Subscriptions")
        table.add_column("#", justify="right")
        table.add_column("Endpoint")
        table.add_column("Daily")
        table.add_column("Time (tz)")
        table.add_column("UTC hour")
        table.add_column("Frequency")
        table.add_column("Follow-up")
        table.add_column("Active")
        for i, sub in enumerate(subscriptions, 1):
            prefs = sub.preferences
            if prefs is None:
                table.add_row(str(i), sub.endpoint[:40], "-", "-", "-", "-", "-", "-")
                issues.append(f"Subscription {i} has no preferences")
                continue
            daily = prefs.daily_check_in
            if daily.enabled and daily.utc_hour is None:
                hour = target_utc_hour(sub)
                issues.append(
                    f"Subscription {i} has no utcHour; its local time {daily.time} is "
                    f"treated as {hour}:00 UTC (run 'nudge backfill')"
                )
            table.add_row(
                str(i),
                sub.endpoint[:40],
                "on" if daily.enabled else "off",
                f"{daily.time} ({daily.timezone or '?'})",
                str(daily.utc_hour) if daily.utc_hour is not None else "legacy",
                daily.frequency,
                f"{prefs.post_attack_follow_up.delay_hours:g}h"
                if prefs.post_attack_follow_up.enabled else "off",
                f"{prefs.active_attack_check_in.delay_hours:g}h"
                if prefs.active_attack_check_in.enabled else "off",
            )
        console.print(table)

    console.print(Panel("[bold]4. Current time & schedule[/bold]", border_style="cyan"))
    console.print(f"Server time (UTC): {now.isoformat()}")
    console.print(f"Current UTC hour: {now.hour}")
    console.print(
        f"Every-other-day subscribers fire today: {'yes' if every_other_day_gate(now.date()) else 'no'}"
    )
    matching = select_daily_checkin_targets(subscriptions, now.hour, now.date())
    console.print(f"Daily check-ins matching this hour: {len(matching)}")

    console.print(Panel("[bold]5. Pending notifications[/bold]", border_style="cyan"))
    for label, items in (
        (QueueKind.FOLLOWUP.value, due_followups),
        (QueueKind.ACTIVE_CHECKIN.value, due_checkins),
    ):
        console.print(f"{label} due now: {len(items)}")
        for item in items:
            console.print(f"  {item.id}: event {item.event_id}, due {item.scheduled_time.isoformat()}")

    console.print(Panel("[bold]Summary[/bold]", border_style="cyan"))
    if issues:
        for i, issue in enumerate(issues, 1):
            console.print(f"[yellow]{i}. {issue}[/yellow]")
    else:
        console.print("[green]No issues found.[/green]")


@app.command()
def backfill(
    default_timezone: str = typer.Option(
        None, "--default-timezone", "-t", help="IANA zone for records that never stored one"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without writing"),
) -> None:
    """Store a real UTC hour for legacy daily check-ins."""
    config = _load_config()
    asyncio.run(_run_backfill(config, default_timezone, dry_run))


async def _run_backfill(config, default_timezone: str | None, dry_run: bool) -> None:
    from nudge.scheduler.backfill import backfill_utc_hours
    from nudge.store.factory import build_stores

    stores = build_stores(config)
    await stores.initialize()
    try:
        report = await backfill_utc_hours(
            stores.subscriptions, default_timezone=default_timezone, dry_run=dry_run
        )
    finally:
        await stores.close()

    verb = "Would update" if dry_run else "Updated"
    console.print(f"{verb} {len(report.updated)} subscription(s)")
    for endpoint, reason in report.skipped.items():
        console.print(f"[yellow]Skipped {endpoint[:50]}: {reason}[/yellow]")


@app.command("send-test")
def send_test(
    endpoint: str = typer.Argument(..., help="Endpoint of a registered subscription"),
) -> None:
    """Send the test notification to one subscriber."""
    from nudge.core.errors import ValidationError
    from nudge.scheduler.dispatcher import DispatchOutcome
    from nudge.service import NotificationService

    config = _load_config()
    stores, dispatcher, _ = _build_engine(config)

    async def _main():
        await stores.initialize()
        try:
            return await NotificationService(stores, dispatcher).send_test(endpoint)
        finally:
            await stores.close()

    try:
        outcome = asyncio.run(_main())
    except ValidationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    if outcome is DispatchOutcome.SENT:
        console.print("[green]Test notification sent.[/green]")
    else:
        console.print(f"[red]Test notification failed: {outcome.value}[/red]")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show Nudge version."""
    from nudge import __version__
    console.print(f"Nudge v{__version__}")


@app.command()
def config() -> None:
    """Show the effective configuration (secrets masked)."""
    cfg = _load_config()
    data = cfg.model_dump()
    if data["push"]["vapid_private_key"]:
        data["push"]["vapid_private_key"] = "****"
    lines = []
    for section, values in data.items():
        lines.append(f"[bold]\\[{section}][/bold]")
        for key, value in values.items():
            lines.append(f"  {key} = {value!r}")
    console.print(Panel("\n".join(lines), title="Nudge Configuration", border_style="cyan"))


if __name__ == "__main__":
    app()
