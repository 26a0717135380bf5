"""Membership diff: converge a local group onto an external roster.

:func:`reconcile` is pure.  It decides who to add and who to remove; the
sync engine applies the result to the directory.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from .directory import User

logger = logging.getLogger(__name__)


@dataclass
class MatchedSponsor:
    """A roster login that resolved to a local user."""

    login: str
    user: User


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    roster: list[str] = field(default_factory=list)
    matched: list[MatchedSponsor] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    added: list[User] = field(default_factory=list)
    removed: list[User] = field(default_factory=list)
    already_in_group: list[User] = field(default_factory=list)
    final_group_size: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)


def dedupe_roster(roster: Iterable[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping the first casing seen."""
    seen: set[str] = set()
    result = []
    for login in roster:
        key = login.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(login)
    return result


def reconcile(
    roster: Sequence[str],
    identity_links: Mapping[str, User],
    current_members: Iterable[User],
    links_by_user_id: Mapping[int, str],
) -> ReconcileResult:
    """
    Diff *roster* against the current group members.

    Args:
        roster: External logins, as returned by the roster fetch.
        identity_links: Lowercased external login -> linked local user.
        current_members: Users currently in the group.
        links_by_user_id: Local user id -> external login, for the removal pass.

    Members with no identity link are never removed.  Running this twice
    against unchanged inputs (after applying the first result) yields no
    additions or removals.
    """
    result = ReconcileResult(roster=dedupe_roster(roster))

    members = list(current_members)
    member_ids = {m.id for m in members}

    for login in result.roster:
        user = identity_links.get(login.lower())
        if user is None:
            result.unmatched.append(login)
        else:
            result.matched.append(MatchedSponsor(login=login, user=user))

    for match in result.matched:
        if match.user.id in member_ids:
            result.already_in_group.append(match.user)
        elif all(u.id != match.user.id for u in result.added):
            # Two roster logins can't link to one user, but a bad link table could.
            result.added.append(match.user)

    active = {login.lower() for login in result.roster}
    for member in members:
        login = links_by_user_id.get(member.id)
        if login is None:
            continue
        if login.lower() not in active:
            result.removed.append(member)

    result.final_group_size = len(member_ids) + len(result.added) - len(result.removed)
    return result
