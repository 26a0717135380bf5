"""Pydantic models for the slices of GitHub GraphQL responses we read."""

from datetime import datetime

from pydantic import BaseModel, Field


class SponsorEntity(BaseModel):
    """User or Organization on the paying side of a sponsorship."""

    login: str | None = None


class Sponsorship(BaseModel):
    """One node of ``sponsorshipsAsMaintainer``."""

    sponsor_entity: SponsorEntity | None = Field(default=None, alias="sponsorEntity")
    is_active: bool = Field(default=False, alias="isActive")

    model_config = {"populate_by_name": True}


class PageInfo(BaseModel):
    """Cursor pagination state."""

    has_next_page: bool = Field(default=False, alias="hasNextPage")
    end_cursor: str | None = Field(default=None, alias="endCursor")

    model_config = {"populate_by_name": True}


class SponsorshipConnection(BaseModel):
    """A page of sponsorships."""

    total_count: int | None = Field(default=None, alias="totalCount")
    page_info: PageInfo | None = Field(default=None, alias="pageInfo")
    nodes: list[Sponsorship | None] | None = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def active_logins(self) -> list[str]:
        """Logins of active sponsors on this page, in API order."""
        logins = []
        for node in self.nodes or []:
            if node is None or not node.is_active or node.sponsor_entity is None:
                continue
            if node.sponsor_entity.login:
                logins.append(node.sponsor_entity.login)
        return logins


class RateLimit(BaseModel):
    """``rateLimit`` block of a GraphQL response."""

    remaining: int
    reset_at: datetime = Field(alias="resetAt")

    model_config = {"populate_by_name": True}
