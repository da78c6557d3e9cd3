"""Main CLI entry point for tiddlypom."""

import click
import logging
import sys
import yaml
from pathlib import Path
from typing import Optional

from ..core.config import ConfigManager, TiddlypomConfig


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--project-root', '-p', type=click.Path(exists=True, file_okay=False),
              help='Directory holding the wiki, database and user files')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], project_root: Optional[str], verbose: bool):
    """tiddlypom - a single-user TiddlyWeb sync server."""
    ctx.ensure_object(dict)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s: %(message)s",
    )

    # Relative paths in a config file resolve against the file's directory.
    if project_root:
        project_path = Path(project_root)
    elif config:
        project_path = Path(config).resolve().parent
    else:
        project_path = Path.cwd()
    config_manager = ConfigManager(project_path)

    if config:
        config_data = config_manager.load_config(Path(config))
    else:
        config_data = config_manager.load_config()

    validation_errors = config_manager.validate_config(config_data)
    if validation_errors:
        click.echo("Configuration validation errors:", err=True)
        for error in validation_errors:
            click.echo(f"  - {error}", err=True)
        if not ctx.resilient_parsing:
            sys.exit(1)
        config_data = config_manager.get_default_config()

    # Store in context for subcommands
    ctx.obj['config_data'] = config_data
    ctx.obj['config'] = TiddlypomConfig.from_dict(config_data)
    ctx.obj['config_manager'] = config_manager
    ctx.obj['project_root'] = project_path
    ctx.obj['verbose'] = verbose


def _user_store(ctx: click.Context, pepper: Optional[str] = None):
    from ..storage.user_store import UserStore

    config: TiddlypomConfig = ctx.obj['config']
    config_manager: ConfigManager = ctx.obj['config_manager']
    return UserStore(
        config_manager.resolve_path(config.storage.users_file),
        config_manager.resolve_path(config.storage.tokens_file),
        config.auth.pepper if pepper is None else pepper,
    )


@cli.command()
@click.option('--host', type=str, help='Address to bind (overrides server.host)')
@click.option('--port', type=click.IntRange(1, 65535), help='Port to listen on (overrides server.port)')
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Migrate the database and start the web server."""
    from ..storage.migrations import MigrationError
    from ..web.server import TiddlyServer

    config: TiddlypomConfig = ctx.obj['config']
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    if not config.auth.pepper:
        click.echo("auth.pepper is not set. Generate one with 'tiddlypom pepper'.", err=True)
        sys.exit(1)

    try:
        server = TiddlyServer(ctx.obj['config_manager'], config)
    except MigrationError as e:
        click.echo(f"✗ Database migration failed: {e}", err=True)
        sys.exit(1)

    server.run(log_level="debug" if ctx.obj['verbose'] else "info")


@cli.command()
def pepper():
    """Print a new random pepper for auth.pepper."""
    from ..core.security import generate_token

    click.echo(generate_token())


@cli.command('hash-password')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True,
              help='Password to hash')
@click.option('--pepper', 'pepper_value', type=str, help='Pepper to use (defaults to auth.pepper)')
@click.pass_context
def hash_password_cmd(ctx: click.Context, password: str, pepper_value: Optional[str]):
    """Print the bcrypt hash of a peppered password."""
    from ..core.security import PasswordTooLongError, hash_password

    pepper_value = pepper_value if pepper_value is not None else ctx.obj['config'].auth.pepper
    if not pepper_value:
        click.echo("A pepper is required (--pepper or auth.pepper).", err=True)
        sys.exit(1)

    try:
        click.echo(hash_password(password, pepper_value))
    except PasswordTooLongError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


@cli.command('add-user')
@click.option('--email', required=True, help='Email address the user logs in with')
@click.option('--password', type=str, help='Plain password, hashed with auth.pepper')
@click.option('--hashed-password', type=str, help='Password hash from hash-password')
@click.pass_context
def add_user(ctx: click.Context, email: str, password: Optional[str],
             hashed_password: Optional[str]):
    """Add a user to the users file, replacing one with the same email."""
    from ..core.models import User
    from ..core.security import PasswordTooLongError, hash_password
    from ..storage.database import StorageError

    if bool(password) == bool(hashed_password):
        click.echo("Give exactly one of --password or --hashed-password.", err=True)
        sys.exit(1)

    config: TiddlypomConfig = ctx.obj['config']
    if password:
        if not config.auth.pepper:
            click.echo("auth.pepper is not set; cannot hash the password.", err=True)
            sys.exit(1)
        try:
            hashed_password = hash_password(password, config.auth.pepper)
        except PasswordTooLongError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(1)

    store = _user_store(ctx)
    try:
        store.create(User(email=email, password_hash=hashed_password))
    except StorageError as e:
        click.echo(f"✗ Failed to save user: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Saved user {email} to {store.users_path}")


@cli.command()
@click.pass_context
def migrate(ctx: click.Context):
    """Apply pending database migrations."""
    from ..storage.migrations import MigrationError, migrate_database

    config: TiddlypomConfig = ctx.obj['config']
    db_path = ctx.obj['config_manager'].resolve_path(config.storage.database_path)

    try:
        applied = migrate_database(db_path, config.storage.busy_timeout_ms)
    except MigrationError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    if applied:
        click.echo(f"✓ Applied migrations: {', '.join(str(v) for v in applied)}")
    else:
        click.echo("Database is already up to date.")


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Show database and credential store status."""
    from rich.console import Console
    from rich.table import Table
    from ..storage.database import DatabaseManager, StorageError
    from ..storage.tiddler_store import TiddlerStore

    config: TiddlypomConfig = ctx.obj['config']
    config_manager: ConfigManager = ctx.obj['config_manager']
    console = Console()

    table = Table(title="tiddlypom status", show_header=False)
    table.add_column("Item", style="cyan")
    table.add_column("Value")

    db_path = config_manager.resolve_path(config.storage.database_path)
    table.add_row("Database", str(db_path))
    if db_path.exists():
        try:
            db_manager = DatabaseManager(db_path, config.storage.busy_timeout_ms)
            table.add_row("Schema version", str(db_manager.get_schema_version()))
            if db_manager.table_exists("tiddler"):
                total, system = TiddlerStore(db_manager).count()
                table.add_row("Tiddlers", f"{total} ({system} system)")
        except StorageError as e:
            table.add_row("Database error", f"[red]{e}[/red]")
    else:
        table.add_row("Schema version", "[yellow]not created[/yellow]")

    store = _user_store(ctx)
    table.add_row("Users file", str(store.users_path))
    try:
        users = store.list_users() if store.users_path.exists() else []
        table.add_row("Users", str(len(users)))
        table.add_row("Remember tokens", str(len(store.list_tokens())))
    except StorageError as e:
        table.add_row("Credential error", f"[red]{e}[/red]")

    table.add_row("Pepper", "set" if config.auth.pepper else "[yellow]not set[/yellow]")
    console.print(table)


@cli.command()
@click.option('--init', 'init_file', is_flag=True, help='Write a default configuration file')
@click.option('--force', is_flag=True, help='Overwrite an existing configuration file')
@click.pass_context
def config(ctx: click.Context, init_file: bool, force: bool):
    """Show the effective configuration."""
    config_manager: ConfigManager = ctx.obj['config_manager']

    if init_file:
        path = config_manager.get_config_path()
        if path.exists() and not force:
            click.echo(f"{path} already exists. Use --force to overwrite.", err=True)
            sys.exit(1)
        if not config_manager.create_default_config_file():
            click.echo("✗ Failed to create configuration file", err=True)
            sys.exit(1)
        click.echo(f"✓ Created configuration file: {path}")
        return

    click.echo(yaml.dump(ctx.obj['config_data'], default_flow_style=False, indent=2))


if __name__ == '__main__':
    cli()
