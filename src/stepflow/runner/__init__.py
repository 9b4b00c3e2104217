"""Command-line runner and logging setup."""

__all__: list[str] = []
