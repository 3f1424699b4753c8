"""CLI commands for managing the mirror schema with yoyo-migrations."""

import os
import subprocess
from typing import List, Optional

import typer
from dotenv import load_dotenv

app = typer.Typer(help="Database migration commands (wraps yoyo-migrations)")

DEFAULT_MIGRATIONS_DIR = "migrations"


def get_database_url() -> str:
    """Get the PostgreSQL connection string for migrations.

    DATABASE_URL wins; SUPABASE_DB_URL is accepted as the Supabase-specific
    name of the same setting.

    Raises:
        typer.Exit: If neither variable is set.
    """
    load_dotenv()

    for name in ("DATABASE_URL", "SUPABASE_DB_URL"):
        value = os.environ.get(name)
        if value:
            return value

    typer.echo(
        "Error: DATABASE_URL or SUPABASE_DB_URL environment variable is required.\n"
        "Set it in your environment or .env file.",
        err=True,
    )
    raise typer.Exit(1)


def get_migrations_dir() -> str:
    return os.environ.get("FLOWGATE_MIGRATIONS_DIR", DEFAULT_MIGRATIONS_DIR)


def _run_yoyo(args: List[str]) -> None:
    """Run the yoyo CLI and exit with its return code on failure."""
    try:
        result = subprocess.run(["yoyo"] + args, check=False, text=True)
    except FileNotFoundError:
        typer.echo(
            "Error: 'yoyo' command not found. Install the yoyo-migrations package.", err=True
        )
        raise typer.Exit(1)
    if result.returncode != 0:
        raise typer.Exit(result.returncode)


def _run_with_database(command: str, extra: Optional[List[str]] = None) -> None:
    database_url = get_database_url()
    _run_yoyo(
        [command, "--batch", *(extra or []), "--database", database_url, get_migrations_dir()]
    )


@app.command("migrate")
def migrate() -> None:
    """Apply all pending database migrations.

    Example:
        flowgate db migrate
    """
    typer.echo("Applying database migrations...")
    _run_with_database("apply")
    typer.echo("Migrations applied successfully.")


@app.command("rollback")
def rollback(
    revision: Optional[str] = typer.Option(
        None,
        "--revision",
        "-r",
        help="Roll back this migration and every migration applied after it",
    ),
) -> None:
    """Rollback applied migrations.

    Example:
        flowgate db rollback --revision 001_initial_schema
    """
    if revision is not None and not revision.strip():
        typer.echo("Error: --revision cannot be empty", err=True)
        raise typer.Exit(1)

    extra = ["--revision", revision.strip()] if revision else []
    typer.echo(
        f"Rolling back to before {revision}..." if revision else "Rolling back migrations..."
    )
    _run_with_database("rollback", extra)
    typer.echo("Rollback completed successfully.")


@app.command("status")
def status() -> None:
    """Show which migrations are applied."""
    database_url = get_database_url()
    _run_yoyo(["list", "--database", database_url, get_migrations_dir()])


@app.command("new")
def new(
    name: str = typer.Argument(..., help="Name for the new migration"),
) -> None:
    """Create a new migration file (does not need a database connection).

    Example:
        flowgate db new add_ticket_estimates
    """
    typer.echo(f"Creating new migration: {name}")
    _run_yoyo(["new", "--batch", "--message", name, get_migrations_dir()])
    typer.echo("Migration file created successfully.")
