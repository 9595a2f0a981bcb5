"""
Entry point for running Cadence as a module.

Usage:
    python -m cadence.delivery due
    python -m cadence.delivery timer status
    python -m cadence.delivery --help
"""
from .cadence_cli import main

if __name__ == "__main__":
    main()
