"""
Entry point for running kontext as a module.

Usage:
    python -m kontext [command] [options]

This allows kontext to be executed directly as a Python module,
which is useful for development and testing without installing
the package.
"""

from kontext.cli import main

if __name__ == "__main__":
    main()
