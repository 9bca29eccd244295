"""Entry point for running wscli as a module: python -m wscli."""

from wscli.cli.commands import app

if __name__ == "__main__":
    app()
