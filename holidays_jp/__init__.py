"""Japanese national holiday lookup based on the Cabinet Office CSV."""

__version__ = "1.0.0"
