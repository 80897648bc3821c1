import typer
import logging
import sys
from typing import Optional

from kubeprov.commands import cluster, provision, serve, state, token, verify
from kubeprov.config import Config
from kubeprov.logging import setup_logging

# Create a callback for global options
app = typer.Typer(help="Provision kubeadm clusters machine by machine.")

debug_mode = False

# Add all command groups
app.add_typer(provision.app, name="provision")
app.add_typer(token.app, name="token")
app.add_typer(state.app, name="state")
app.add_typer(cluster.app, name="cluster")

# Single commands
app.command("verify")(verify.verify_nodes)
app.command("serve")(serve.serve_api)


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    log_file: Optional[str] = typer.Option(Config.LOG_FILE or None, "--log-file", help="Also log to this file"),
):
    """kubeprov - kubeadm cluster provisioning."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug, log_file=log_file)
    if debug:
        logging.debug("Debug mode enabled")


def run():
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
