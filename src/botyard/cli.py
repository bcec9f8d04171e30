"""Command-line interface for Botyard."""

import asyncio
from pathlib import Path

import click

from botyard import __version__
from botyard.config import Config
from botyard.logging import get_logger, setup_logging

log = get_logger("cli")


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config).",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="Output logs as JSON or human-readable format (overrides config).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    log_json: bool | None,
) -> None:
    """Botyard - run many config-driven Discord bots from one supervisor."""
    ctx.ensure_object(dict)

    config = Config.load_or_default(config_file)
    ctx.obj["config"] = config
    ctx.obj["config_file"] = config_file

    # CLI overrides config
    effective_log_level = log_level or config.log_level
    effective_log_json = log_json if log_json is not None else config.log_json

    setup_logging(json_output=effective_log_json, level=effective_log_level)


def _open_store(config: Config):
    """Engine and store over a migrated database."""
    from botyard.database import create_tables, get_engine
    from botyard.migrations import migrate
    from botyard.store import ConfigStore

    engine = get_engine(config)
    migrate(engine)
    create_tables(engine)
    return engine, ConfigStore(engine)


@cli.command()
def version() -> None:
    """Print version information."""
    click.echo(f"botyard {__version__}")


@cli.command()
@click.option("--host", default=None, help="API host to bind (overrides config).")
@click.option("--port", default=None, type=int, help="API port to bind (overrides config).")
@click.option(
    "--no-auto-start",
    is_flag=True,
    default=False,
    help="Do not start bots that have autoStart enabled.",
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, no_auto_start: bool) -> None:
    """Run the supervisor, the config watcher and the admin API.

    Bots with settings.autoStart are started on launch. Edits to bot
    records, from the API or any other writer, are picked up by running
    bots without reconnecting. Use Ctrl+C or send SIGTERM for graceful
    shutdown; every running bot is stopped first.
    """
    import uvicorn

    from botyard.announcements import AnnouncementScheduler
    from botyard.api import create_app
    from botyard.integrations import IntegrationRegistry, StarboardWatcher
    from botyard.notifications import NotificationHub
    from botyard.suppression import SelfWriteLedger
    from botyard.supervisor import BotSupervisor

    config = ctx.obj["config"]
    engine, store = _open_store(config)
    host = host or config.api.host
    port = port or config.api.port

    log.info("serve_command_invoked", api_host=host, api_port=port)

    async def run():
        ledger = SelfWriteLedger()
        hub = NotificationHub(queue_size=config.notifications.queue_size)
        scheduler = AnnouncementScheduler(store, ledger, config)
        starboard = StarboardWatcher(store, ledger)
        registry = IntegrationRegistry.default(config.http)
        supervisor = BotSupervisor(
            store,
            hub,
            scheduler,
            starboard,
            registry,
            ledger,
            config,
        )

        scheduler.start()
        try:
            if config.supervisor.auto_start and not no_auto_start:
                started = await supervisor.start_auto()
                log.info("auto_start_complete", started=len(started))
            supervisor.start_watching()

            app = create_app(config)
            app.state.config = config
            app.state.db = engine
            app.state.store = store
            app.state.supervisor = supervisor
            app.state.hub = hub

            server = uvicorn.Server(
                uvicorn.Config(app, host=host, port=port, log_level="info")
            )
            await server.serve()
        finally:
            await supervisor.stop_all()
            scheduler.shutdown()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        log.info("serve_shutdown_requested")
    except Exception as e:
        log.error("serve_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        engine.dispose()


@cli.group()
def bots() -> None:
    """Bot record commands."""
    pass


@bots.command(name="list")
@click.pass_context
def bots_list(ctx: click.Context) -> None:
    """List stored bots."""
    engine, store = _open_store(ctx.obj["config"])
    try:
        configs = store.list()
    finally:
        engine.dispose()

    if not configs:
        click.echo("No bots configured")
        return

    click.echo(f"Bots ({len(configs)}):\n")
    for config in configs:
        auto = " [autoStart]" if config.settings.auto_start else ""
        click.echo(f"  {config.id}  {config.name}{auto}")
        click.echo(
            f"    Prefix: {config.prefix}  Commands: {len(config.commands)}  "
            f"Events: {len(config.events)}  Integrations: {len(config.integrations)}"
        )


@bots.command(name="create")
@click.argument("name")
@click.option("--token", default="", help="Bot token.")
@click.option("--prefix", default="!", help="Command prefix.")
@click.option("--auto-start/--no-auto-start", default=False, help="Start with 'botyard serve'.")
@click.pass_context
def bots_create(ctx: click.Context, name: str, token: str, prefix: str, auto_start: bool) -> None:
    """Create a bot record."""
    engine, store = _open_store(ctx.obj["config"])
    try:
        config = store.create(
            {
                "name": name,
                "token": token,
                "prefix": prefix,
                "settings": {"autoStart": auto_start},
            }
        )
    finally:
        engine.dispose()
    click.echo(f"Created bot {config.id} ({config.name})")


@bots.command(name="logs")
@click.argument("bot_id")
@click.option("-n", "--lines", default=100, type=int, help="Number of lines.")
@click.pass_context
def bots_logs(ctx: click.Context, bot_id: str, lines: int) -> None:
    """Print a bot's most recent log lines."""
    engine, store = _open_store(ctx.obj["config"])
    try:
        entries = store.read_logs(bot_id, lines=lines)
    finally:
        engine.dispose()

    if not entries:
        click.echo("No log entries")
        return
    for entry in entries:
        click.echo(entry)


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command(name="status")
@click.pass_context
def db_status(ctx: click.Context) -> None:
    """Show database migration status."""
    from botyard.database import get_engine
    from botyard.migrations import current_version, discover_migrations, pending_migrations

    config = ctx.obj["config"]
    engine = get_engine(config)

    current = current_version(engine)
    migrations = discover_migrations()

    click.echo(f"Database: {config.database_path}")
    click.echo(f"Current version: {current}")
    click.echo(f"Available migrations: {len(migrations)}")

    pending = pending_migrations(engine)
    if pending:
        click.echo(f"Pending migrations: {len(pending)}")
        for migration in pending:
            click.echo(f"  {migration.version}: {migration.description}")
    else:
        click.echo("No pending migrations")


@db.command(name="migrate")
@click.option(
    "--target",
    type=int,
    default=None,
    help="Target version (default: latest).",
)
@click.pass_context
def db_migrate(ctx: click.Context, target: int | None) -> None:
    """Apply pending database migrations."""
    from botyard.database import get_engine
    from botyard.migrations import current_version, migrate

    config = ctx.obj["config"]
    engine = get_engine(config)

    before = current_version(engine)
    after = migrate(engine, target_version=target)

    if before == after:
        click.echo(f"Database already at version {after}")
    else:
        click.echo(f"Migrated from version {before} to {after}")


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="check")
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=True, path_type=Path),
    default="config.yaml",
    help="Path to configuration file.",
)
def config_check(config_file: Path) -> None:
    """Validate configuration file."""
    try:
        cfg = Config.load(config_file)
        click.echo(f"Configuration valid: {config_file}")
        click.echo(f"  Data directory: {cfg.data_dir}")
        click.echo(f"  Database path: {cfg.database_path}")
        click.echo(f"  Log level: {cfg.log_level}")
        click.echo(f"  API: {cfg.api.host}:{cfg.api.port}")
        click.echo(f"  Scheduler timezone: {cfg.scheduler.timezone}")
        click.echo(f"  Watch interval: {cfg.supervisor.watch_interval_seconds:g}s")
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
