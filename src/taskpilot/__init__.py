"""taskpilot - turn natural-language requests into tool actions."""

__version__ = "0.1.0"
