"""CLI interface for sponsor-sync."""

from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from .cache import SQLiteCacheStore
from .config import AppConfig, load_config
from .discord_client import DiscordClient
from .github_client import GitHubClient
from .health import HealthRegistry
from .invites import InviteLog, InviteRequestError, InviteService
from .jobs import build_sync, run_cleanup_job, run_sync_job
from .logging_utils import setup_logging
from .sync import GITHUB_PROVIDER, FileDirectory, SyncHistory, SyncReport

app = typer.Typer(
    name="sponsor-sync",
    help="Sync a GitHub Sponsors roster into a local group and issue sponsor-only Discord invites",
    no_args_is_help=True,
)
console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config file"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]


def get_config(config_path: Path | None = None, verbose: bool = False) -> AppConfig:
    """Load configuration from file and environment, then set up logging."""
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1) from None
    setup_logging(verbose, config.secrets())
    return config


def _ts(epoch: float | None) -> str:
    if epoch is None:
        return "-"
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S")


def _mask(secret: str) -> str:
    return f"{secret[:8]}..." if secret else "[red]Not set[/red]"


def _print_report(report: SyncReport) -> None:
    title = "Sync Preview (dry run)" if report.dry_run else "Sync Result"
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Active sponsors", str(report.total_sponsors))
    table.add_row("Matched", str(len(report.matched_sponsors)))
    table.add_row("Unmatched", str(len(report.unmatched_sponsors)))
    table.add_row("Added", ", ".join(report.added_users) or "[dim]none[/dim]")
    table.add_row("Removed", ", ".join(report.removed_users) or "[dim]none[/dim]")
    table.add_row("Already in group", str(len(report.already_in_group)))
    table.add_row("Group size", str(report.current_group_size))
    if report.badges_granted is not None:
        table.add_row("Badges granted", str(report.badges_granted))
    console.print(table)

    if report.unmatched_sponsors:
        console.print(
            "[dim]Unmatched sponsors (no linked account): "
            f"{', '.join(report.unmatched_sponsors)}[/dim]"
        )


def _invite_service(config: AppConfig, directory: FileDirectory) -> InviteService:
    storage = config.storage
    client = DiscordClient(
        config.discord.bot_token,
        config.discord.guild_id,
        config.discord.invite_channel_id,
        invite_max_age=config.discord.invite_max_age,
        webhook_url=config.discord.webhook_url,
        api_url=config.discord.api_url,
        cache=SQLiteCacheStore(storage.cache_db),
    )
    return InviteService(
        config.sponsors,
        config.discord,
        directory,
        client,
        InviteLog(storage.invites_db),
    )


@app.command()
def sync(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would change without modifying the group"),
    ] = False,
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Fetch the sponsor roster and reconcile the sponsors group."""
    config = get_config(config_path, verbose)

    if not config.sponsors.configured:
        console.print("[red]GitHub account and token must be configured (SPONSORS_ACCOUNT, SPONSORS_TOKEN)[/red]")
        raise typer.Exit(1)

    if dry_run:
        engine = build_sync(config)
        try:
            report = engine.perform(dry_run=True)
        finally:
            engine.close()
        if report.error:
            console.print(f"[red]✗ {report.error}[/red]")
            raise typer.Exit(1)
        _print_report(report)
        return

    # Manual runs ignore the enabled flag; only the scheduler honours it.
    config.sponsors.enabled = True
    result = run_sync_job(config) or {}
    if result.get("error"):
        console.print(f"[red]✗ Sync failed: {result['error']}[/red]")
        raise typer.Exit(1)
    _print_report(SyncReport(**result))
    console.print("[green]✓ Sync complete[/green]")


@app.command()
def cleanup(
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Apply retention to sync history and invites, and sweep expired invites."""
    config = get_config(config_path, verbose)
    # Manual runs ignore the enabled flag; only the scheduler honours it.
    config.sponsors.enabled = True
    result = run_cleanup_job(config)

    table = Table(title="Cleanup")
    table.add_column("Item", style="cyan")
    table.add_column("Count")
    table.add_row("Sync history deleted", str(result.history_deleted))
    table.add_row("Invites marked expired", str(result.invites_expired))
    table.add_row("Invites deleted", str(result.invites_deleted))
    table.add_row("Cache entries expired", str(result.cache_expired))
    console.print(table)

    for err in result.errors:
        console.print(f"[red]✗ {err}[/red]")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def history(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of runs to show")] = 10,
    failed: Annotated[bool, typer.Option("--failed", help="Only show failed runs")] = False,
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show recent sync runs."""
    config = get_config(config_path, verbose)
    store = SyncHistory(config.storage.history_db)
    runs = store.failed(limit) if failed else store.recent(limit)

    if not runs:
        console.print("[dim]No sync runs recorded yet.[/dim]")
        return

    table = Table(title="Sync History")
    table.add_column("Synced At", style="blue")
    table.add_column("Sponsors", justify="right")
    table.add_column("Matched", justify="right")
    table.add_column("Unmatched", justify="right")
    table.add_column("Added", justify="right", style="green")
    table.add_column("Removed", justify="right", style="red")
    table.add_column("Status")

    for run in runs:
        status = "[green]✓[/green]" if run.success else f"[red]✗ {run.error_message}[/red]"
        table.add_row(
            _ts(run.created_at),
            str(run.total_sponsors),
            str(run.matched_count),
            str(run.unmatched_count),
            str(run.added_count),
            str(run.removed_count),
            status,
        )
    console.print(table)


@app.command("rate-limit")
def rate_limit(
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show the GitHub API rate limit for the configured token."""
    config = get_config(config_path, verbose)
    if not config.sponsors.token:
        console.print("[red]No GitHub token configured[/red]")
        raise typer.Exit(1)

    with GitHubClient(config.sponsors.token, api_url=config.sponsors.api_url) as client:
        status = client.rate_limit_status()

    table = Table(title="GitHub Rate Limit")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Remaining", str(status["remaining"]) if status["remaining"] is not None else "[dim]unknown[/dim]")
    table.add_row("Resets at", _ts(status["reset_at"]))
    reset_in = status["reset_in"]
    table.add_row("Resets in", f"{int(reset_in)}s" if reset_in is not None else "-")
    console.print(table)


@app.command()
def members(
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """List current members of the sponsors group with their GitHub logins."""
    config = get_config(config_path, verbose)
    directory = FileDirectory(config.storage.directory_path)
    group = directory.find_group(config.sponsors.group_name)
    if group is None:
        console.print(f"[dim]Group '{config.sponsors.group_name}' does not exist yet.[/dim]")
        return

    table = Table(title=f"Members of {group.name}")
    table.add_column("ID", style="dim")
    table.add_column("Username", style="cyan")
    table.add_column("GitHub")
    for user in directory.group_members(group.id):
        link = directory.identity_link(user.id, GITHUB_PROVIDER)
        table.add_row(str(user.id), user.username, link.login if link else "[dim]-[/dim]")
    console.print(table)


@app.command()
def invites(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of invites to show")] = 50,
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show recently issued Discord invites and usage statistics."""
    config = get_config(config_path, verbose)
    log = InviteLog(config.storage.invites_db)
    now = datetime.now().timestamp()

    table = Table(title="Discord Invites")
    table.add_column("Created", style="blue")
    table.add_column("User", justify="right")
    table.add_column("GitHub", style="cyan")
    table.add_column("Discord", style="cyan")
    table.add_column("Code")
    table.add_column("Expires")
    table.add_column("Status")

    styles = {"active": "green", "used": "blue", "expired": "dim"}
    for invite in log.recent(limit):
        status = invite.status(now).value
        table.add_row(
            _ts(invite.created_at),
            str(invite.user_id),
            invite.github_username or "-",
            invite.discord_username,
            invite.invite_code,
            _ts(invite.expires_at),
            f"[{styles[status]}]{status}[/{styles[status]}]",
        )
    console.print(table)

    stats = log.stats()
    console.print(
        f"Total: {stats['total']}  Used: {stats['used']}  Expired: {stats['expired']}  "
        f"Active: {stats['active']}  Usage rate: {stats['usage_rate']}%"
    )


@app.command()
def invite(
    username: Annotated[str, typer.Argument(help="Local username requesting the invite")],
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Issue a single-use Discord invite for a sponsor."""
    config = get_config(config_path, verbose)
    directory = FileDirectory(config.storage.directory_path)
    user = directory.find_user_by_username(username)
    if user is None:
        console.print(f"[red]Unknown user: {username}[/red]")
        raise typer.Exit(1)

    service = _invite_service(config, directory)
    try:
        result = service.generate_invite(user.id)
    except InviteRequestError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(1) from None
    finally:
        service.client.close()

    console.print(f"[green]✓ Invite created:[/green] {result['invite_url']}")
    console.print(f"[dim]Expires at {_ts(result['expires_at'])}[/dim]")


@app.command()
def status(
    username: Annotated[str, typer.Argument(help="Local username")],
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show sponsor and Discord status for a user."""
    config = get_config(config_path, verbose)
    directory = FileDirectory(config.storage.directory_path)
    user = directory.find_user_by_username(username)
    if user is None:
        console.print(f"[red]Unknown user: {username}[/red]")
        raise typer.Exit(1)

    service = _invite_service(config, directory)
    info: dict[str, Any] = dict(service.user_status(user.id))
    if info["joined_at"] is not None:
        info["joined_at"] = _ts(info["joined_at"])
    try:
        if info["is_sponsor"]:
            info.update(service.status(user.id))
    except InviteRequestError as e:
        info["discord"] = e.message
    finally:
        service.client.close()

    table = Table(title=f"Status for {user.username}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in info.items():
        table.add_row(key.replace("_", " ").capitalize(), str(value))
    console.print(table)


@app.command()
def health(
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show outstanding problems flagged by the API clients."""
    config = get_config(config_path, verbose)
    problems = HealthRegistry(config.storage.health_db).problems()
    if not problems:
        console.print("[green]✓ No problems[/green]")
        return
    for problem in problems:
        console.print(f"[red]✗ {problem.name}[/red] (since {_ts(problem.flagged_at)}): {problem.message}")
    raise typer.Exit(1)


@app.command()
def config_show(
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show current configuration (with secrets masked)."""
    config = get_config(config_path, verbose)
    s, d, st = config.sponsors, config.discord, config.storage

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Sync Enabled", "yes" if s.enabled else "no")
    table.add_row("GitHub Account", s.account or "[red]Not set[/red]")
    table.add_row("GitHub Token", _mask(s.token))
    table.add_row("Group", f"{s.group_name} ({s.group_full_name})")
    table.add_row("Title / Badge", f"{s.title} / {s.badge_name}")
    table.add_row("History Retention", f"{s.history_retention_days} days")
    table.add_row("Discord Bot Token", _mask(d.bot_token))
    table.add_row("Discord Guild", d.guild_id or "[dim]Not set[/dim]")
    table.add_row("Invite Channel", d.invite_channel_id or "[dim]Not set[/dim]")
    table.add_row("Invite Max Age", f"{d.invite_max_age} seconds")
    table.add_row("Webhook", _mask(d.webhook_url))
    table.add_row("Invite Retention", f"{d.invite_retention_days} days")
    table.add_row("Data Directory", str(st.data_dir))
    table.add_row("Directory File", str(st.directory_path))

    console.print(table)


if __name__ == "__main__":
    app()
