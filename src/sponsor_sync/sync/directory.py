"""Local user directory: users, identity links, and groups.

The sync engine and invite flow only talk to the :class:`Directory`
protocol.  Two implementations ship here: an in-memory one, and a YAML
file-backed one for running the CLI against a local roster of accounts.
"""

import logging
import shutil
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import BaseModel, Field, ValidationError

from .._sqlite import secure_file

logger = logging.getLogger(__name__)

GITHUB_PROVIDER = "github"
DISCORD_PROVIDER = "discord"


class User(BaseModel):
    """A local account."""

    id: int
    username: str
    title: str | None = None
    primary_group_id: int | None = None
    badges: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class IdentityLink(BaseModel):
    """Association between a local account and an external login."""

    user_id: int
    provider: str
    login: str = Field(alias="external_login")
    # Display name on the provider, when it differs from the login.
    display_name: str | None = None

    model_config = {"populate_by_name": True}


class Group(BaseModel):
    """A local group; membership is the set of ``member_ids``."""

    id: int
    name: str
    full_name: str = ""
    public: bool = True
    flair_icon: str = ""
    flair_color: str = ""
    flair_bg_color: str = ""
    member_ids: list[int] = Field(default_factory=list)
    # user id -> epoch seconds the user was added
    joined_at: dict[int, float] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class DirectoryData(BaseModel):
    """Serializable directory contents."""

    users: list[User] = Field(default_factory=list)
    identity_links: list[IdentityLink] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class Directory(Protocol):
    """What the sync engine and invite flow need from the local user store."""

    def identity_links(self, provider: str) -> list[IdentityLink]: ...

    def identity_link(self, user_id: int, provider: str) -> IdentityLink | None: ...

    def get_user(self, user_id: int) -> User | None: ...

    def find_user_by_username(self, username: str) -> User | None: ...

    def find_group(self, name: str) -> Group | None: ...

    def ensure_group(
        self,
        name: str,
        full_name: str = "",
        flair_icon: str = "",
        flair_color: str = "",
        flair_bg_color: str = "",
    ) -> Group: ...

    def group_members(self, group_id: int) -> list[User]: ...

    def add_member(self, group_id: int, user_id: int) -> None: ...

    def remove_member(self, group_id: int, user_id: int) -> None: ...

    def update_user(self, user: User) -> None: ...

    def grant_badge_backfill(self, badge_name: str, group_id: int) -> int: ...


class InMemoryDirectory:
    """Directory held entirely in memory."""

    def __init__(self, data: DirectoryData | None = None, clock: Callable[[], float] = time.time):
        self.data = data or DirectoryData()
        self._clock = clock

    # -- hooks --------------------------------------------------------

    def _commit(self) -> None:
        """Persist after a mutation.  No-op in memory."""

    # -- reads --------------------------------------------------------

    def identity_links(self, provider: str) -> list[IdentityLink]:
        return [link for link in self.data.identity_links if link.provider == provider]

    def identity_link(self, user_id: int, provider: str) -> IdentityLink | None:
        for link in self.data.identity_links:
            if link.user_id == user_id and link.provider == provider:
                return link
        return None

    def get_user(self, user_id: int) -> User | None:
        for user in self.data.users:
            if user.id == user_id:
                return user
        return None

    def find_user_by_username(self, username: str) -> User | None:
        wanted = username.lower()
        for user in self.data.users:
            if user.username.lower() == wanted:
                return user
        return None

    def find_group(self, name: str) -> Group | None:
        for group in self.data.groups:
            if group.name == name:
                return group
        return None

    def group_members(self, group_id: int) -> list[User]:
        group = self._group(group_id)
        return [u for u in (self.get_user(uid) for uid in group.member_ids) if u is not None]

    # -- writes -------------------------------------------------------

    def add_user(self, user: User) -> User:
        if self.get_user(user.id) is not None:
            raise ValueError(f"User {user.id} already exists")
        self.data.users.append(user)
        self._commit()
        return user

    def link_identity(self, user_id: int, provider: str, login: str, display_name: str | None = None) -> IdentityLink:
        """Create or replace the single link for (user, provider)."""
        self.data.identity_links = [
            link
            for link in self.data.identity_links
            if not (link.user_id == user_id and link.provider == provider)
        ]
        link = IdentityLink(user_id=user_id, provider=provider, login=login, display_name=display_name)
        self.data.identity_links.append(link)
        self._commit()
        return link

    def ensure_group(
        self,
        name: str,
        full_name: str = "",
        flair_icon: str = "",
        flair_color: str = "",
        flair_bg_color: str = "",
    ) -> Group:
        """Create the group, or refresh the flair on an existing one."""
        group = self.find_group(name)
        if group is None:
            next_id = max((g.id for g in self.data.groups), default=0) + 1
            group = Group(
                id=next_id,
                name=name,
                full_name=full_name,
                public=True,
                flair_icon=flair_icon,
                flair_color=flair_color,
                flair_bg_color=flair_bg_color,
            )
            self.data.groups.append(group)
            logger.info("Created group %s", name)
        else:
            group.flair_icon = flair_icon
            group.flair_color = flair_color
            group.flair_bg_color = flair_bg_color
        self._commit()
        return group

    def add_member(self, group_id: int, user_id: int) -> None:
        group = self._group(group_id)
        if user_id not in group.member_ids:
            group.member_ids.append(user_id)
            group.joined_at[user_id] = self._clock()
            self._commit()

    def remove_member(self, group_id: int, user_id: int) -> None:
        group = self._group(group_id)
        if user_id in group.member_ids:
            group.member_ids.remove(user_id)
            group.joined_at.pop(user_id, None)
            self._commit()

    def update_user(self, user: User) -> None:
        for i, existing in enumerate(self.data.users):
            if existing.id == user.id:
                self.data.users[i] = user
                self._commit()
                return
        raise KeyError(f"User {user.id} not found")

    def grant_badge_backfill(self, badge_name: str, group_id: int) -> int:
        """
        Grant *badge_name* to every group member lacking it and revoke it from
        anyone who has left the group.  Returns the number of grants made.
        """
        member_ids = set(self._group(group_id).member_ids)
        granted = revoked = 0
        for user in self.data.users:
            has_badge = badge_name in user.badges
            if user.id in member_ids and not has_badge:
                user.badges.append(badge_name)
                granted += 1
            elif user.id not in member_ids and has_badge:
                user.badges.remove(badge_name)
                revoked += 1
        if granted or revoked:
            logger.debug("Badge %s: %d granted, %d revoked", badge_name, granted, revoked)
            self._commit()
        return granted

    def _group(self, group_id: int) -> Group:
        for group in self.data.groups:
            if group.id == group_id:
                return group
        raise KeyError(f"Group {group_id} not found")


class FileDirectory(InMemoryDirectory):
    """Directory persisted to a YAML file, saved after every mutation."""

    def __init__(self, path: Path, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        super().__init__(self._load(self.path), clock=clock)

    @staticmethod
    def _load(path: Path) -> DirectoryData:
        if not path.exists():
            return DirectoryData()

        try:
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
            return DirectoryData.model_validate(raw)
        except (yaml.YAMLError, ValidationError) as e:
            logger.error(f"Directory file corrupted: {e}")

            backup_path = path.with_suffix(path.suffix + ".backup")
            if backup_path.exists():
                logger.info("Attempting recovery from backup...")
                with open(backup_path) as f:
                    raw = yaml.safe_load(f) or {}
                return DirectoryData.model_validate(raw)
            raise

    def _commit(self) -> None:
        self.save()

    def save(self) -> None:
        """Write the directory with a backup of the previous file and an atomic replace."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self.path.exists():
            backup_path = self.path.with_suffix(self.path.suffix + ".backup")
            try:
                shutil.copy2(self.path, backup_path)
            except OSError as e:
                logger.warning(f"Failed to create backup: {e}")

        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(temp_path, "w") as f:
            yaml.safe_dump(
                self.data.model_dump(mode="json", by_alias=False),
                f,
                default_flow_style=False,
                sort_keys=False,
            )
        temp_path.replace(self.path)
        secure_file(self.path)
