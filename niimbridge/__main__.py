"""Allow running the bridge with ``python -m niimbridge``."""

from niimbridge.cli import main

if __name__ == "__main__":
    main()
