"""Challenge lifecycle: forward-only status machine.

pending -> active -> live -> finished, with cancelled reachable only by an
explicit owner action. Shared by the sync scheduler and the membership
operations.
"""

from typing import Optional

from .game_status import GameStatus

PENDING = 'pending'
ACTIVE = 'active'
LIVE = 'live'
FINISHED = 'finished'
CANCELLED = 'cancelled'

STATUS_ORDER = (PENDING, ACTIVE, LIVE, FINISHED)
ALL_STATUSES = STATUS_ORDER + (CANCELLED,)
TERMINAL_STATUSES = frozenset({FINISHED, CANCELLED})
# Statuses in which members may still join or leave
OPEN_STATUSES = frozenset({PENDING, ACTIVE})

# Members needed before a pending challenge is promoted to active
MIN_MEMBERS_TO_ACTIVATE = 2


class ChallengeError(Exception):
    """Base class for domain errors reported to callers."""
    status_code = 400


class ChallengeNotFoundError(ChallengeError):
    status_code = 404


class IllegalTransitionError(ChallengeError):
    """The requested change contradicts the lifecycle (e.g. joining a live challenge)."""
    status_code = 409


class MembershipError(ChallengeError):
    status_code = 400


class ChallengePermissionError(ChallengeError):
    status_code = 403


class ChallengeConflictError(ChallengeError):
    """The challenge kept changing underneath a conditional write."""
    status_code = 409


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def status_rank(status: str) -> int:
    return STATUS_ORDER.index(status)


def is_forward_transition(current: str, target: str) -> bool:
    """True if ``target`` is a legal later status for ``current``; cancel is allowed from any open phase."""
    if current not in ALL_STATUSES or target not in ALL_STATUSES:
        return False
    if current in TERMINAL_STATUSES:
        return False
    if target == CANCELLED:
        return True
    return status_rank(target) > status_rank(current)


def next_status(
    current: str,
    game: Optional[GameStatus],
    member_count: int,
    min_members: int = MIN_MEMBERS_TO_ACTIVATE,
) -> str:
    """Return the status a challenge should move to given the game's phase.

    Never returns a status earlier than ``current``. An unresolved game
    (``None``) or an unclassified state code leaves the status unchanged.
    """
    if current in TERMINAL_STATUSES:
        return current
    if game is None:
        return current
    if game.is_finished:
        return FINISHED
    if game.is_live:
        return LIVE
    if game.is_scheduled:
        if current == PENDING and member_count >= min_members:
            return ACTIVE
        return current
    return current
