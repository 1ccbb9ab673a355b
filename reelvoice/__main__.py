"""Module entrypoint for running Reelvoice as ``python -m reelvoice``."""

from __future__ import annotations

from reelvoice.cli import main


if __name__ == "__main__":
    main()
