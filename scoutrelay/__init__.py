"""scoutrelay: AI relay for the scout portal."""

__version__ = "0.4.0"
