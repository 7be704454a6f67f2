"""
Main CLI command registration.

Commands import the application code lazily so ``--help`` stays fast.
"""
import typer

from . import security, server

# Create the main command group
app = typer.Typer(help="phonegate command line interface")


@app.callback()
def main_callback():
    """phonegate command line interface."""
    pass


app.command("run")(server.run_server)
app.command("status")(server.server_status)
app.command("provision-admin")(security.provision_admin_cmd)
app.command("block")(security.block_cmd)
app.command("unblock")(security.unblock_cmd)
app.command("cleanup")(security.cleanup_cmd)
app.command("events")(security.events_cmd)

__all__ = ['app']
