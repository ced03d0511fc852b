"""
Entry point for running CargoKit CLI as a module.

Usage: python -m cargokit [command] [options]
"""

from cargokit.cli.parser import main

if __name__ == "__main__":
    main()
