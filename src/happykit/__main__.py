"""Allow running the demo application with ``python -m happykit``."""

from happykit.cli import main

main()
