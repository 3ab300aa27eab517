"""
Convenience entry point for running fbsync directly.

Usage: python -m fbsync [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
