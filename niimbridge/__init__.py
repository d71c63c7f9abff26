"""niimbridge - IPP to NIIMBOT label printer bridge.

niimbridge is invoked by an IPP front-end (e.g. ippeveprinter) once per job.
It converts the job file into a 1-bit label raster sized for the printer and
prints it over Bluetooth LE.

Usage:
    niimbridge /path/to/job.png
    NIIMBLUE_NAME=D110_M-XXXX niimbridge job.pdf

Printer settings live in config/bridge.config.json and can be overridden
with NIIMBOT_*, NIIMBLUE_* or bare environment variables.
"""

__version__ = "0.1.0"
