"""Discord invite issuance and lifecycle tracking."""

from .log import DuplicateInviteError, Invite, InviteLog, InviteStatus
from .service import InviteRequestError, InviteService

__all__ = [
    "DuplicateInviteError",
    "Invite",
    "InviteLog",
    "InviteRequestError",
    "InviteService",
    "InviteStatus",
]
