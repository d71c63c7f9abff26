"""Error kinds raised by the bridge pipeline.

Each error carries the process exit status the CLI maps it to.
"""


class BridgeError(Exception):
    """Base error for a failed job."""

    exit_code = 1


class ConfigError(BridgeError):
    """A required setting is missing."""

    exit_code = 2


class UsageError(BridgeError):
    """The job file argument is missing or invalid."""

    exit_code = 2


class RasterizationError(BridgeError):
    """The job file could not be converted to a label raster."""

    exit_code = 3


class PrintError(BridgeError):
    """Connecting to, encoding for, or transmitting to the printer failed."""

    exit_code = 1
