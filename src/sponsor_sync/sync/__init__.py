"""Sponsor group synchronization."""

from .directory import (
    DISCORD_PROVIDER,
    GITHUB_PROVIDER,
    Directory,
    FileDirectory,
    Group,
    IdentityLink,
    InMemoryDirectory,
    User,
)
from .engine import SponsorSync, SyncReport
from .history import SyncHistory, SyncOutcome
from .reconciler import MatchedSponsor, ReconcileResult, reconcile

__all__ = [
    "DISCORD_PROVIDER",
    "GITHUB_PROVIDER",
    "Directory",
    "FileDirectory",
    "Group",
    "IdentityLink",
    "InMemoryDirectory",
    "MatchedSponsor",
    "ReconcileResult",
    "SponsorSync",
    "SyncHistory",
    "SyncOutcome",
    "SyncReport",
    "User",
    "reconcile",
]
