"""
Account security commands: admin provisioning, blocklist and cleanup.
"""
from typing import Optional

import typer
from rich.table import Table

from ..utils import console, open_database, print_error, print_info, print_success, print_warning, run_async


def provision_admin_cmd(
    phone: str = typer.Option(..., "--phone", "-p", help="Admin phone number"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Admin password"
    ),
    full_name: str = typer.Option("Administrator", "--name", help="Admin display name"),
    email: str = typer.Option("admin@example.com", "--email", help="Admin email address"),
) -> None:
    """Create the bootstrap admin, or reset its password if it exists."""
    from ...auth.errors import AuthError
    from ...auth.provisioning import provision_admin
    from ...core.config import settings
    from ...core.security import PasswordHasher

    async def _provision():
        async with open_database() as database:
            async with database.get_session() as db:
                return await provision_admin(
                    db,
                    PasswordHasher(rounds=settings.BCRYPT_ROUNDS),
                    phone,
                    password,
                    full_name=full_name,
                    email=email,
                    source="cli",
                )

    try:
        user, created = run_async(_provision())
    except AuthError as e:
        print_error(e.message)
        raise typer.Exit(code=1)

    if created:
        print_success(f"Admin {user.phone} created (id={user.id})")
    else:
        print_success(f"Admin {user.phone} password reset (id={user.id})")


def _identifier(phone: Optional[str], email: Optional[str]):
    from ...auth.blocklist import IdentifierType

    if bool(phone) == bool(email):
        print_error("Pass exactly one of --phone or --email")
        raise typer.Exit(code=2)
    if phone:
        return IdentifierType.PHONE, phone
    return IdentifierType.EMAIL, email


def block_cmd(
    phone: Optional[str] = typer.Option(None, "--phone", help="Phone number to block"),
    email: Optional[str] = typer.Option(None, "--email", help="Email address to block"),
    role: str = typer.Option("user", "--role", "-r", help="Role the block applies to"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Why the identifier is blocked"),
) -> None:
    """Block a phone number or email address from signup and login."""
    from ...auth.audit import AuditService, SecurityEventType, Severity
    from ...auth.blocklist import BlocklistService

    identifier_type, value = _identifier(phone, email)

    async def _block():
        async with open_database() as database:
            async with database.get_session() as db:
                blocked = await BlocklistService.block(db, identifier_type, value, role, reason=reason)
                await db.commit()
                await AuditService.record_event(
                    db,
                    SecurityEventType.IDENTIFIER_BLOCKED,
                    f"Blocked {identifier_type.value} for role {role}",
                    severity=Severity.WARNING,
                    details={"type": identifier_type.value, "value": blocked.value, "role": role, "reason": reason},
                )
                return blocked.value

    canonical = run_async(_block())
    print_success(f"Blocked {identifier_type.value} {canonical} for role {role}")


def unblock_cmd(
    phone: Optional[str] = typer.Option(None, "--phone", help="Phone number to unblock"),
    email: Optional[str] = typer.Option(None, "--email", help="Email address to unblock"),
    role: str = typer.Option("user", "--role", "-r", help="Role the block applies to"),
) -> None:
    """Remove a block."""
    from ...auth.blocklist import BlocklistService

    identifier_type, value = _identifier(phone, email)

    async def _unblock():
        async with open_database() as database:
            async with database.get_session() as db:
                return await BlocklistService.unblock(db, identifier_type, value, role)

    if run_async(_unblock()):
        print_success(f"Unblocked {identifier_type.value} {value} for role {role}")
    else:
        print_warning(f"No block found for {identifier_type.value} {value} and role {role}")


def cleanup_cmd() -> None:
    """Delete expired blacklist entries and sessions."""
    from ...auth import build_auth_gateway
    from ...cache import create_store
    from ...core.config import settings
    from ...tasks import run_sweep

    async def _cleanup():
        gateway = build_auth_gateway(create_store("memory"), settings)
        async with open_database() as database:
            return await run_sweep(database, gateway)

    result = run_async(_cleanup())
    print_success(
        f"Removed {result.blacklist_entries} blacklist entries and {result.sessions} sessions"
    )


def events_cmd(
    user_id: Optional[int] = typer.Option(None, "--user-id", "-u", help="Only show events for this user"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of events to show"),
) -> None:
    """Show the most recent security events."""
    from ...auth.audit import AuditService

    async def _events():
        async with open_database() as database:
            async with database.get_session() as db:
                return await AuditService.recent_events(db, user_id=user_id, limit=limit)

    events = run_async(_events())
    if not events:
        print_info("No security events recorded")
        return

    table = Table(title="Security events")
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("User")
    table.add_column("IP")
    table.add_column("Message")
    for event in events:
        table.add_row(
            event.occurred_at.isoformat(timespec="seconds"),
            event.event_type,
            event.severity,
            str(event.user_id or "-"),
            event.ip_address or "-",
            event.message,
        )
    console.print(table)
