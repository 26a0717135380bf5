"""GitHub Sponsors group synchronization and sponsor-only Discord invites."""

__version__ = "0.1.0"
