import os
import subprocess
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

import typer
from rich.console import Console
from rich.table import Table

from lock_in.authorization import DEFAULT_APPS, WhitelistError, default_app_packages
from lock_in.schema import RepeatType, Weekday
from lock_in.services import Services, build_services
from lock_in.settings import load_settings
from lock_in.utils.logging import setup_logging
from lock_in.utils.paths import SERVICE_NAME, get_systemd_unit_path
from lock_in.utils.processes import is_daemon_running as pid_is_running
from lock_in.utils.state import read_state, send_command
from lock_in.utils.time import format_clock_ms, format_duration_seconds, parse_time_string

app = typer.Typer(help="Lock In - focus sessions that keep you off distracting apps")
whitelist_app = typer.Typer(help="Manage apps allowed during focus sessions")
schedule_app = typer.Typer(help="Manage recurring focus sessions")
app.add_typer(whitelist_app, name="whitelist")
app.add_typer(schedule_app, name="schedule")
console = Console()

UNIT_TEMPLATE = """[Unit]
Description=Lock In focus session daemon
After=graphical-session.target

[Service]
Environment=DISPLAY={display}
ExecStart={python} -m lock_in.cli start --daemonize
Restart=on-failure
RestartSec=5

[Install]
WantedBy=default.target
"""


def is_daemon_running() -> bool:
    """Checks if the daemon is running via status file and PID."""
    state = read_state()
    return bool(state) and pid_is_running(state.get("pid"))


@contextmanager
def open_services() -> Iterator[Services]:
    services = build_services(load_settings())
    try:
        yield services
    finally:
        services.shutdown()


def notify_daemon(command: str, **data) -> None:
    """Drops a command for the daemon, warning when nobody will pick it up."""
    if not is_daemon_running():
        console.print(
            "[yellow]Warning:[/yellow] Daemon is not running. "
            "Changes take effect once it is started with `lockin start`."
        )
    try:
        send_command(command, **data)
    except OSError as e:
        console.print(f"[red]Error:[/red] Could not send command to daemon: {e}")
        raise typer.Exit(1) from None


def parse_days(days: str | None) -> frozenset[Weekday]:
    if not days:
        return frozenset()
    return frozenset(Weekday.parse(d) for d in days.split(",") if d.strip())


@app.command()
def focus(
    minutes: int = typer.Argument(..., help="Session length in minutes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Start a focus session right now."""
    setup_logging(verbose=verbose, console=False)
    try:
        with open_services() as services:
            services.sessions.reconcile()
            session = services.sessions.start(timedelta(minutes=minutes), source="manual")
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if session is None:
        console.print("[red]Error:[/red] A focus session is already active.")
        raise typer.Exit(1)

    notify_daemon("session_started")
    console.print(
        f"[bold green]Focus session started.[/bold green] "
        f"Ends at {format_clock_ms(session.end_time_ms)} ({format_duration_seconds(minutes * 60)})."
    )


@app.command()
def unlock(
    pin: str | None = typer.Option(None, "--pin", "-p", help="Your 4-digit unlock PIN"),
    code: str | None = typer.Option(None, "--code", "-c", help="One-time code from your partner"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """End the active focus session early."""
    setup_logging(verbose=verbose, console=False)
    if (pin is None) == (code is None):
        console.print("[red]Error:[/red] Pass exactly one of --pin or --code.")
        raise typer.Exit(1)

    with open_services() as services:
        services.sessions.reconcile()
        if not services.sessions.is_locked():
            console.print("[yellow]No focus session is active.[/yellow]")
            return
        if pin is not None:
            if not services.unlock.has_pin():
                console.print("[red]Error:[/red] No PIN set. Use a partner code instead.")
                raise typer.Exit(1)
            unlocked = services.unlock.unlock_with_pin(pin)
        else:
            unlocked = services.unlock.unlock_with_code(code)

    if not unlocked:
        console.print("[red]Error:[/red] Wrong PIN or invalid code.")
        raise typer.Exit(1)
    console.print("[bold green]✔ Session unlocked.[/bold green]")


@app.command(name="request-code")
def request_code(
    to: str | None = typer.Option(None, "--to", help="Send to this destination instead of the saved partner"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Send a one-time unlock code to your accountability partner."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        services.sessions.reconcile()
        if not services.sessions.is_locked():
            console.print("[yellow]No focus session is active.[/yellow]")
            return
        delivered = services.unlock.request_delivery(to)
        remaining = services.unlock.otc_remaining_ms()

    if not delivered:
        console.print(
            "[red]Error:[/red] Could not deliver the code. "
            "Check the partner destination and `partner_webhook_url`."
        )
        raise typer.Exit(1)
    console.print(
        f"[green]Code sent.[/green] Valid for {format_duration_seconds(remaining // 1000)}."
    )


@app.command(name="set-pin")
def set_pin(
    pin: str = typer.Argument(..., help="New 4-digit PIN"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Set the PIN that ends a session early."""
    setup_logging(verbose=verbose, console=False)
    try:
        with open_services() as services:
            services.unlock.set_pin(pin)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print("[green]PIN saved.[/green]")


@app.command()
def partner(
    destination: str = typer.Argument(..., help="Phone number, address or handle of your partner"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Set the accountability partner who receives unlock codes."""
    setup_logging(verbose=verbose, console=False)
    try:
        with open_services() as services:
            services.unlock.set_partner(destination)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"[green]Partner set to[/green] [magenta]{destination}[/magenta]")


@whitelist_app.command("add")
def whitelist_add(
    package: str = typer.Argument(..., help="Process name of the app, e.g. 'firefox'"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Allow an app during focus sessions."""
    setup_logging(verbose=verbose, console=False)
    try:
        with open_services() as services:
            whitelist = services.whitelist.add(package)
            quota = services.whitelist.max_additional_apps
    except WhitelistError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"[green]Allowed[/green] [magenta]{package}[/magenta] ({len(whitelist.apps)}/{quota} used)")


@whitelist_app.command("remove")
def whitelist_remove(
    package: str = typer.Argument(..., help="Process name to remove"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Stop allowing an app."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        removed = services.whitelist.remove(package)
    if not removed:
        console.print(f"[red]Error:[/red] {package} is not whitelisted.")
        raise typer.Exit(1)
    console.print(f"[green]Removed[/green] [magenta]{package}[/magenta]")


@whitelist_app.command("list")
def whitelist_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show the whitelist and default app toggles."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        whitelist = services.whitelist.snapshot()
        quota = services.whitelist.max_additional_apps

    table = Table(title=f"Allowed Apps ({len(whitelist.apps)}/{quota})")
    table.add_column("App", style="magenta")
    table.add_column("Kind", style="cyan")
    for package in sorted(whitelist.apps):
        table.add_row(package, "Whitelisted")
    for package in sorted(default_app_packages(whitelist)):
        table.add_row(package, "Default app")
    console.print(table)

    toggles = Table(title="Default Apps")
    toggles.add_column("Category", style="cyan")
    toggles.add_column("Allowed", style="yellow")
    for category in DEFAULT_APPS:
        enabled = getattr(whitelist, f"allow_{category}_app")
        toggles.add_row(category, "Yes" if enabled else "No")
    console.print(toggles)


@whitelist_app.command("default")
def whitelist_default(
    category: str = typer.Argument(..., help="phone, clock or calendar"),
    enabled: bool = typer.Option(True, "--on/--off", help="Allow or block the category"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Toggle a default app category."""
    setup_logging(verbose=verbose, console=False)
    try:
        with open_services() as services:
            services.whitelist.set_default_app(category.lower(), enabled)
    except WhitelistError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    state = "[green]allowed[/green]" if enabled else "[red]blocked[/red]"
    console.print(f"Default {category} app is now {state}.")


@schedule_app.command("add")
def schedule_add(
    name: str = typer.Argument(..., help="Schedule name"),
    start_time: str = typer.Argument(..., help="Start time (e.g. 9am, 21:30)"),
    duration: int = typer.Argument(..., help="Session length in minutes"),
    repeat: RepeatType = typer.Option(RepeatType.DAILY, "--repeat", "-r", case_sensitive=False),
    days: str | None = typer.Option(None, "--days", "-d", help="Days for weekly schedules (e.g. mon,wed,fri)"),
    notify: int = typer.Option(0, "--notify", "-n", help="Minutes before start to send a reminder"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Add a recurring or one-time focus session."""
    setup_logging(verbose=verbose, console=False)
    current_settings = load_settings()

    if duration > current_settings.max_session_minutes:
        console.print(
            f"[red]Error:[/red] Session duration ({duration}m) exceeds the maximum "
            f"allowed ({current_settings.max_session_minutes}m). "
            "This is a guardrail to prevent permanent lockouts."
        )
        raise typer.Exit(1)

    try:
        start = parse_time_string(start_time)
        with open_services() as services:
            sched = services.schedules.add_schedule(
                name,
                start.hour,
                start.minute,
                duration,
                repeat_type=repeat,
                repeat_days=parse_days(days),
                pre_notify_minutes=notify,
            )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    notify_daemon("reschedule")
    console.print(
        f"[green]Successfully added schedule:[/green] {sched.name} at {sched.start_label} "
        f"({sched.repeat_label}, {format_duration_seconds(duration * 60)})"
    )


@schedule_app.command("list")
def schedule_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List all schedules."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        schedules = services.schedules.list_all()

    if not schedules:
        console.print("[yellow]No schedules found.[/yellow]")
        return

    next_fires = {}
    state = read_state()
    if state:
        next_fires = {s["schedule_id"]: s["fire_at"] for s in state.get("next_schedules", [])}

    table = Table(title="Focus Schedules")
    table.add_column("ID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Start", style="magenta")
    table.add_column("Duration", style="blue")
    table.add_column("Repeat", style="green")
    table.add_column("Reminder", style="yellow")
    table.add_column("Enabled", style="yellow")
    table.add_column("Next", style="green")
    for sched in schedules:
        table.add_row(
            str(sched.id),
            sched.name,
            sched.start_label,
            format_duration_seconds(sched.focus_duration_minutes * 60),
            sched.repeat_label,
            f"{sched.pre_notify_minutes}m" if sched.pre_notify_minutes else "-",
            "Yes" if sched.enabled else "No",
            next_fires.get(sched.id, "-").replace("T", " ")[:16],
        )
    console.print(table)


@schedule_app.command("remove")
def schedule_remove(
    schedule_id: int = typer.Argument(..., help="ID of the schedule to remove"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Remove a schedule by its ID."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        removed = services.schedules.remove(schedule_id)
    if not removed:
        console.print(f"[red]Error:[/red] No schedule with ID {schedule_id}.")
        raise typer.Exit(1)
    notify_daemon("disarm", schedule_id=schedule_id)
    console.print(f"[green]Removed schedule {schedule_id}.[/green]")


@schedule_app.command("toggle")
def schedule_toggle(
    schedule_id: int = typer.Argument(..., help="ID of the schedule to enable or disable"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Enable or disable a schedule."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        sched = services.schedules.toggle(schedule_id)
    if sched is None:
        console.print(f"[red]Error:[/red] No schedule with ID {schedule_id}.")
        raise typer.Exit(1)
    notify_daemon("reschedule")
    state = "[green]enabled[/green]" if sched.enabled else "[red]disabled[/red]"
    console.print(f"Schedule {sched.name} is now {state}.")


@schedule_app.command("templates")
def schedule_templates(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Add the quick template schedules."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        created = services.schedules.add_templates()
    if not created:
        console.print("[yellow]All templates already exist.[/yellow]")
        return
    notify_daemon("reschedule")
    for sched in created:
        console.print(f"[green]Added[/green] {sched.name} at {sched.start_label} ({sched.repeat_label})")


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of sessions to show"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show recently finished focus sessions."""
    setup_logging(verbose=verbose, console=False)
    with open_services() as services:
        sessions = services.analytics.recent_sessions(limit)

    if not sessions:
        console.print("[yellow]No finished sessions yet.[/yellow]")
        return

    table = Table(title="Recent Sessions")
    table.add_column("Started", style="magenta")
    table.add_column("Planned", style="blue")
    table.add_column("Actual", style="blue")
    table.add_column("Completed", style="green")
    table.add_column("Source", style="white")
    for entry in sessions:
        table.add_row(
            format_clock_ms(entry["start_time_ms"]),
            format_duration_seconds(entry["target_duration_ms"] // 1000),
            format_duration_seconds(entry["actual_duration_ms"] // 1000),
            "Yes" if entry["completed"] else "No",
            entry.get("source") or "-",
        )
    console.print(table)


@app.command()
def config(
    max_apps: int | None = typer.Option(None, "--max-apps", help="Whitelist quota"),
    max_session_mins: int | None = typer.Option(
        None, "--max-session", "-m", help="Maximum session duration in minutes (guardrail)"
    ),
    debounce: float | None = typer.Option(None, "--debounce", help="Seconds to ignore repeated focus events"),
    otc_minutes: int | None = typer.Option(None, "--otc-validity", help="Minutes a partner code stays valid"),
    webhook: str | None = typer.Option(None, "--webhook", "-w", help="Webhook that relays partner codes"),
    kill: bool | None = typer.Option(None, "--kill/--no-kill", help="Close blocked apps"),
    summary: str | None = typer.Option(None, "--summary", "-s", help="Reminder summary (use {name}, {minutes})"),
    body: str | None = typer.Option(
        None, "--body", "-b", help="Reminder body (use {name}, {minutes}, {duration})"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure enforcement, unlock and reminder settings."""
    setup_logging(verbose=verbose, console=False)
    current_settings = load_settings()

    if max_apps is not None:
        if max_apps < 0:
            console.print("[red]Error:[/red] Whitelist quota cannot be negative.")
            raise typer.Exit(1)
        current_settings.max_additional_apps = max_apps
    if max_session_mins is not None:
        if max_session_mins < 1:
            console.print("[red]Error:[/red] Maximum session duration must be at least 1 minute.")
            raise typer.Exit(1)
        console.print(
            "\n[bold red]WARNING:[/bold red] Changing the maximum session duration "
            "can lead to extended lockouts. Set this value carefully."
        )
        current_settings.max_session_minutes = max_session_mins
    if debounce is not None:
        current_settings.debounce_seconds = debounce
    if otc_minutes is not None:
        current_settings.otc_validity_minutes = otc_minutes
    if webhook is not None:
        current_settings.partner_webhook_url = webhook or None
    if kill is not None:
        current_settings.kill_blocked_apps = kill
    if summary is not None:
        current_settings.notify_summary = summary
    if body is not None:
        current_settings.notify_body = body

    current_settings.save()

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Whitelist Quota", str(current_settings.max_additional_apps))
    table.add_row("Max Session Duration (m)", str(current_settings.max_session_minutes))
    table.add_row("Debounce (s)", str(current_settings.debounce_seconds))
    table.add_row("Code Validity (m)", str(current_settings.otc_validity_minutes))
    table.add_row("Partner Webhook", current_settings.partner_webhook_url or "-")
    table.add_row("Close Blocked Apps", "Yes" if current_settings.kill_blocked_apps else "No")
    table.add_row("Summary Template", current_settings.notify_summary)
    table.add_row("Body Template", current_settings.notify_body)
    console.print(table)
    console.print("[green]Configuration saved![/green] Restart the daemon to apply it.")


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Check the status of the daemon and the active session."""
    setup_logging(verbose=verbose, console=False)

    state = read_state()
    daemon_pid = state.get("pid") if state else None
    if not pid_is_running(daemon_pid):
        daemon_pid = None

    console.print("[bold cyan]Lock In - Daemon Status[/bold cyan]")
    status_text = "[bold green]● Running[/bold green]" if daemon_pid else "[bold red]○ Stopped[/bold red]"
    console.print(f"Service Status: {status_text}")
    if daemon_pid:
        console.print(f"Daemon PID: [magenta]{daemon_pid}[/magenta]")

    with open_services() as services:
        check = services.sessions.check_expiry_or_restart()
        session = services.sessions.snapshot()
        otc_ms = services.unlock.otc_remaining_ms()

    if session.locked:
        console.print("\n[bold yellow]⚠️ ACTIVE FOCUS SESSION[/bold yellow]")
        console.print(f"Source: {session.source}")
        console.print(f"Duration: {format_duration_seconds(session.target_duration_ms // 1000)}")
        console.print(f"Ends at: {format_clock_ms(session.end_time_ms)}")
        if check.remaining_ms:
            console.print(f"Remaining: [bold]{format_duration_seconds(check.remaining_ms // 1000)}[/bold]")
        else:
            console.print("[dim]Session is over and will be cleared by the daemon.[/dim]")
        if otc_ms:
            console.print(f"Partner code outstanding, valid for {format_duration_seconds(otc_ms // 1000)}")
    else:
        console.print("\nNo focus session currently active.")

    if not daemon_pid:
        console.print("\n[dim]To start the daemon, run: [bold]lockin start[/bold] or use systemd.[/dim]")


@app.command()
def start(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    daemonize: bool = typer.Option(
        False,
        "--daemonize",
        hidden=True,
        help="Internal flag for systemd to run the daemon directly.",
    ),
) -> None:
    """Starts and manages the focus daemon using systemd."""
    setup_logging(verbose=verbose, filename="daemon.log")

    if is_daemon_running():
        console.print("[yellow]Daemon is already running.[/yellow]")
        return

    service_file = get_systemd_unit_path()
    if daemonize or not service_file.exists():
        # This is the execution path for systemd. It runs the daemon in the
        # foreground from systemd's perspective.
        from lock_in.daemon import run_daemon

        if not daemonize:
            console.print(f"[dim]No {SERVICE_NAME} found, running in the foreground.[/dim]")
        run_daemon()
        return

    console.print("Daemon is not running. Attempting to start it via systemd...")

    try:
        subprocess.run(
            ["systemctl", "--user", "start", SERVICE_NAME],
            check=True,
            capture_output=True,
            text=True,
        )

        console.print("Waiting for daemon to initialize...")
        time.sleep(2)

        if is_daemon_running():
            console.print("[bold green]✔ Daemon started successfully via systemd.[/bold green]")
        else:
            console.print(
                "[bold red]✖ Error:[/bold red] Failed to start daemon. Check service "
                f"status with `systemctl --user status {SERVICE_NAME}` or logs with "
                f"`journalctl --user -u {SERVICE_NAME}`."
            )
    except FileNotFoundError:
        console.print(
            "[red]Error:[/red] `systemctl` command not found. "
            "This command requires a systemd-based OS."
        )
        raise typer.Exit(1)
    except subprocess.CalledProcessError as e:
        console.print("[red]Error starting systemd service:[/red]")
        console.print(f"[dim]{e.stderr}[/dim]")
        raise typer.Exit(1)


@app.command(name="install-service")
def install_service(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Install a systemd user service that keeps the daemon running."""
    setup_logging(verbose=verbose, console=False)
    unit_path = get_systemd_unit_path()
    try:
        unit_path.parent.mkdir(parents=True, exist_ok=True)
        unit_path.write_text(UNIT_TEMPLATE.format(python=sys.executable, display=os.environ.get("DISPLAY", ":0")))
        subprocess.run(["systemctl", "--user", "daemon-reload"], check=True, capture_output=True, text=True)
        subprocess.run(["systemctl", "--user", "enable", SERVICE_NAME], check=True, capture_output=True, text=True)
    except OSError as e:
        console.print(f"[red]Error:[/red] Could not install {SERVICE_NAME}: {e}")
        raise typer.Exit(1) from None
    except subprocess.CalledProcessError as e:
        console.print("[red]Error enabling systemd service:[/red]")
        console.print(f"[dim]{e.stderr}[/dim]")
        raise typer.Exit(1) from None
    console.print(f"[green]Installed[/green] {unit_path}. Start it with `lockin start`.")


if __name__ == "__main__":
    app()
