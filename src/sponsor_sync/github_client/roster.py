"""Fetch the active sponsor roster for a GitHub user or organization."""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import ValidationError

from ..api.errors import ApiError, RateLimitError
from .client import GitHubClient
from .models import SponsorshipConnection

logger = logging.getLogger(__name__)

AccountType = Literal["organization", "user"]

PAGE_SIZE = 100
# Hard stop against a paginator that never reports the last page.
MAX_SPONSORS = 10_000
ACCOUNT_TYPE_TTL = 24 * 60 * 60

ACCOUNT_TYPE_QUERY = """
query($login: String!) {
  organization(login: $login) {
    id
  }
}
"""

# Field name is substituted with the account type; everything else is a variable.
ROSTER_QUERY = """
query($login: String!, $first: Int!, $after: String) {
  %s(login: $login) {
    sponsorshipsAsMaintainer(first: $first, after: $after, includePrivate: true) {
      totalCount
      pageInfo {
        hasNextPage
        endCursor
      }
      nodes {
        sponsorEntity {
          ... on User { login }
          ... on Organization { login }
        }
        isActive
      }
    }
  }
}
"""


class RosterFetchError(Exception):
    """The roster could not be fetched; no partial roster is ever returned."""

    def __init__(self, message: str, cause: ApiError | None = None):
        super().__init__(message)
        self.cause = cause


class RosterFetcher:
    """Classifies the sponsored account and pages through its active sponsors."""

    def __init__(self, client: GitHubClient, page_size: int = PAGE_SIZE, max_sponsors: int = MAX_SPONSORS):
        self.client = client
        self.page_size = page_size
        self.max_sponsors = max_sponsors

    def classify_account(self, account: str) -> AccountType:
        """
        Return ``"organization"`` or ``"user"`` for *account*.

        Cached for 24 hours.  Any API failure short of a rate limit falls
        back to ``"user"``; GitHub answers a user login with a GraphQL
        "Could not resolve to an Organization" error, so that is the
        common path for personal accounts.
        """
        try:
            data = self.client.query(
                ACCOUNT_TYPE_QUERY,
                {"login": account},
                cache_key=f"account_type_{account.lower()}",
                cache_ttl=ACCOUNT_TYPE_TTL,
            )
        except RateLimitError:
            raise
        except ApiError as e:
            logger.warning("Could not determine account type for %s, assuming user: %s", account, e)
            return "user"

        org = (data.get("data") or {}).get("organization")
        return "organization" if isinstance(org, dict) and org.get("id") else "user"

    def fetch_roster(self, account: str) -> list[str]:
        """
        Return every active sponsor login, in API order and original case.

        Raises:
            RosterFetchError: any API failure on any page; progress from
                earlier pages is discarded.
        """
        try:
            account_type = self.classify_account(account)
        except RateLimitError as e:
            raise RosterFetchError(f"Rate limited while classifying {account}: {e}", e) from e

        graphql = ROSTER_QUERY % account_type
        sponsors: list[str] = []
        cursor: str | None = None
        pages = 0

        while True:
            variables: dict[str, Any] = {"login": account, "first": self.page_size, "after": cursor}
            try:
                data = self.client.query(graphql, variables)
            except ApiError as e:
                logger.error("API error while fetching sponsors (page %d): %s", pages + 1, e)
                raise RosterFetchError(f"Failed to fetch sponsors for {account}: {e}", e) from e
            pages += 1

            connection = self._connection(data, account_type)
            if connection is None:
                logger.debug("No sponsorship connection in page %d; stopping", pages)
                break
            sponsors.extend(connection.active_logins())

            page_info = connection.page_info
            if page_info is None or not page_info.has_next_page or not page_info.end_cursor:
                break
            if len(sponsors) > self.max_sponsors:
                logger.warning(
                    "Sponsor roster for %s exceeded %d entries; stopping pagination",
                    account,
                    self.max_sponsors,
                )
                break
            cursor = page_info.end_cursor

        logger.debug("Fetched %d active sponsors for %s in %d page(s)", len(sponsors), account, pages)
        return sponsors

    @staticmethod
    def _connection(data: dict[str, Any], account_type: AccountType) -> SponsorshipConnection | None:
        owner = (data.get("data") or {}).get(account_type)
        if not isinstance(owner, dict):
            return None
        raw = owner.get("sponsorshipsAsMaintainer")
        if not isinstance(raw, dict):
            return None
        try:
            return SponsorshipConnection.model_validate(raw)
        except ValidationError as e:
            raise RosterFetchError(f"Unexpected sponsorship payload: {e}") from e
