"""tracklog: offline-first food and activity log with Gist sync."""

__version__ = "0.1.0"
