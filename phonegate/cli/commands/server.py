"""
Server management commands.
"""
from typing import Optional

import typer

from ..utils import open_database, print_info, print_success, run_async


def run_server(
    host: Optional[str] = typer.Option(None, help="Bind address (defaults to HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (defaults to PORT)"),
    reload: Optional[bool] = typer.Option(None, help="Reload on code changes (defaults to RELOAD)"),
    workers: Optional[int] = typer.Option(None, help="Worker processes (defaults to WORKERS)"),
) -> None:
    """Run the API server with uvicorn."""
    # Import uvicorn only when needed
    import uvicorn

    from ...core.config import settings

    host = host or settings.HOST
    port = port or settings.PORT
    reload = settings.RELOAD if reload is None else reload
    workers = workers or settings.WORKERS

    print_success(f"Starting {settings.APP_NAME} at http://{host}:{port}")
    uvicorn.run(
        "phonegate:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=1 if reload else workers,
    )


def server_status(
    stats: bool = typer.Option(False, "--stats", help="Also show session, blacklist and login counts"),
    hours: int = typer.Option(24, "--hours", help="Login window for --stats"),
) -> None:
    """Show the effective configuration."""
    from ...core.config import settings

    print_info("Server status:")
    print_info(f"  Environment: {settings.ENV}")
    print_info(f"  Debug mode: {settings.DEBUG}")
    print_info(f"  Store backend: {settings.CACHE_BACKEND}")
    print_info(f"  SMS gateway: {settings.SMS_GATEWAY_URL or 'console'}")
    print_info(f"  Docs: http://localhost:{settings.PORT}/docs" if settings.DOCS_ENABLED else "  Docs: Disabled")

    if not stats:
        return

    from ...auth import build_auth_gateway
    from ...cache import create_store

    async def _stats():
        gateway = build_auth_gateway(create_store("memory"), settings)
        async with open_database() as database:
            async with database.get_session() as db:
                return await gateway.security_stats(db, hours)

    for name, value in run_async(_stats()).items():
        print_info(f"  {name}: {value}")
