"""Entry point for running threadkeeper as a module."""

from threadkeeper.cli.commands import app

if __name__ == "__main__":
    app()
