"""
Shared utilities for CLI commands.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, TypeVar

from rich.console import Console

T = TypeVar("T")

# Global console instances
console = Console()
err_console = Console(stderr=True)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[blue]ℹ {message}[/blue]")


def run_async(coro: Awaitable[T]) -> T:
    """Run a coroutine from a synchronous typer command."""
    return asyncio.run(coro)


@asynccontextmanager
async def open_database(database_url: Any = None):
    """Yield a ready :class:`~phonegate.db.Database` and close it afterwards."""
    from ...core.config import settings
    from ...db import Database

    database = Database(database_url or settings.DATABASE_URL, echo_sql=settings.ECHO_SQL)
    try:
        if settings.AUTO_CREATE_TABLES:
            await database.create_all()
        yield database
    finally:
        await database.close()
