"""taskpilot CLI entry point."""

from taskpilot.cli import app

if __name__ == "__main__":
    app()
