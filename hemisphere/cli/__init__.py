"""Command-line tools for the hemisphere runtime."""
