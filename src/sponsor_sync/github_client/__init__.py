"""GitHub GraphQL client and sponsor roster fetching."""

from .client import GitHubClient, classify_github_response
from .roster import AccountType, RosterFetcher, RosterFetchError

__all__ = [
    "AccountType",
    "GitHubClient",
    "RosterFetcher",
    "RosterFetchError",
    "classify_github_response",
]
