import logging
import sys

import typer

from swarmctl.commands import firewall, provision, swarm, validate, verify
from swarmctl.logging import setup_logging

app = typer.Typer(help="Provision Ubuntu hosts as Docker Swarm control planes or workers.")

debug_mode = False

# Add all command groups
app.command("validate")(validate.validate_config)
app.add_typer(provision.app, name="provision", help="Provision this host for a stage or role.")
app.add_typer(firewall.app, name="firewall", help="Plan or apply the UFW policy for a role.")
app.add_typer(verify.app, name="verify", help="Run read-only checks against a provisioned host.")
app.add_typer(swarm.app, name="swarm", help="Docker Swarm join and reachability helpers.")


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """swarmctl - Docker Swarm host provisioning CLI."""
    global debug_mode
    debug_mode = debug
    log_file = setup_logging(debug)
    if debug:
        logging.debug("Debug mode enabled")
        if log_file:
            logging.debug(f"Logging to {log_file}")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
