"""Allow ``python -m holidays_jp``."""

from .cli import cli

cli()
