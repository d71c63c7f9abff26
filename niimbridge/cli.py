"""Command-line interface for the niimbridge print bridge."""

import asyncio
import logging
import sys
from pathlib import Path

import click

from niimbridge import __version__
from niimbridge.bridge import process_job
from niimbridge.config import DEFAULT_CONFIG_FILE, get_settings
from niimbridge.errors import BridgeError
from niimbridge.ipp import ProtocolHints

logger = logging.getLogger(__name__)


def setup_logging(debug: bool) -> None:
    """Set up logging configuration.

    Messages go to stderr with the "LEVEL: message" prefixes the IPP
    front-end understands. Informational messages only appear in debug mode.

    Args:
        debug: Enable informational and debug messages.
    """
    logging.basicConfig(
        level=logging.INFO if debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    logging.getLogger("niimbridge").setLevel(logging.DEBUG if debug else logging.NOTSET)


@click.command()
@click.argument("job_file", required=False)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Settings file (default: {DEFAULT_CONFIG_FILE})",
)
@click.version_option(version=__version__)
def main(job_file: str | None, config_path: Path | None):
    """Print JOB_FILE on a NIIMBOT label printer.

    Meant to be run by an IPP front-end such as ippeveprinter, which passes
    job attributes as IPP_* environment variables.

        ippeveprinter -c niimbridge -f image/png,application/pdf NIIMBOT
    """
    setup_logging(debug=False)

    try:
        settings = get_settings(config_path)
        setup_logging(settings.debug)
        asyncio.run(process_job(job_file, settings, ProtocolHints()))
    except BridgeError as e:
        logger.error(str(e))
        sys.exit(e.exit_code)


if __name__ == "__main__":
    main()
