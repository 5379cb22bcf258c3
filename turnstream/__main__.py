"""Allow ``python -m turnstream``."""

from turnstream.cli.commands import app

if __name__ == "__main__":
    app()
