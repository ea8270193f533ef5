"""
Entry point for running podlens as a Python module.

    python -m podlens <command>
"""

from .cli import main

if __name__ == "__main__":
    main()
