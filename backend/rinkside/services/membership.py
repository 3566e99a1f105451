"""Membership operations triggered by user actions.

join / leave / decline run synchronously inside a request and share the
lifecycle rules with the sync scheduler. Each one reads the challenge,
validates, then writes with a version check; on a lost race it re-reads and
re-validates a few times before giving up with ``ChallengeConflictError``.
"""

import logging
from typing import Callable, Dict, Any, Iterable, Optional

from .lifecycle import (
    ACTIVE,
    CANCELLED,
    MIN_MEMBERS_TO_ACTIVATE,
    OPEN_STATUSES,
    ChallengeConflictError,
    ChallengeNotFoundError,
    ChallengePermissionError,
    IllegalTransitionError,
    MembershipError,
    is_terminal,
    next_status,
)
from .realtime import CREATED, DECLINED, DELETED, JOINED, LEFT, STATUS_CHANGED

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


class MembershipService:

    def __init__(self, store, channel, provider=None, min_members: int = MIN_MEMBERS_TO_ACTIVATE,
                 default_max_members: int = 10) -> None:
        self.store = store
        self.channel = channel
        self.provider = provider
        self.min_members = min_members
        self.default_max_members = default_max_members

    # ---- reads ----

    def get(self, challenge_id):
        challenge = self.store.get(challenge_id)
        if challenge is None:
            raise ChallengeNotFoundError(f"Challenge {challenge_id} not found")
        return challenge

    def list_for_user(self, user_id: str) -> Dict[str, list]:
        """User's challenges grouped by status."""
        grouped: Dict[str, list] = {}
        for challenge in self.store.list_for_user(user_id):
            grouped.setdefault(challenge.status, []).append(challenge)
        return grouped

    # ---- owner actions ----

    def create(self, owner_id: str, game_id: str, title: str, description: Optional[str] = None,
               invited_user_ids: Iterable[str] = (), max_members: Optional[int] = None,
               ticket_id: Optional[str] = None, game_start_time=None):
        if not owner_id or not game_id or not title:
            raise MembershipError('owner, game and title are required')
        if max_members is None:
            max_members = self.default_max_members
        try:
            max_members = int(max_members)
        except (TypeError, ValueError):
            raise MembershipError('max_members must be an integer')
        if max_members < 1:
            raise MembershipError('max_members must be at least 1')
        if ticket_id:
            self._check_ticket(ticket_id, owner_id, str(game_id))
        challenge = self.store.create(
            owner_id=owner_id,
            game_id=str(game_id),
            title=title,
            description=description,
            invited_user_ids=invited_user_ids,
            max_members=max_members,
            ticket_id=ticket_id,
            game_start_time=game_start_time,
        )
        logger.info(f"[challenge-create] challenge={challenge.id} owner={owner_id} game={challenge.game_id}")
        self.channel.publish(challenge.id, CREATED, f"{owner_id} created the challenge")
        return challenge

    def delete(self, challenge_id, user_id: str) -> None:
        challenge = self.get(challenge_id)
        if challenge.owner_id != user_id:
            raise ChallengePermissionError('Only the owner may delete a challenge')
        if not self.store.delete(challenge_id):
            raise ChallengeNotFoundError(f"Challenge {challenge_id} not found")
        logger.info(f"[challenge-delete] challenge={challenge_id} owner={user_id}")
        self.channel.publish(challenge_id, DELETED, f"{user_id} deleted the challenge")

    def cancel(self, challenge_id, user_id: str):
        challenge = self.get(challenge_id)
        if challenge.owner_id != user_id:
            raise ChallengePermissionError('Only the owner may cancel a challenge')
        current = challenge.status
        if is_terminal(current):
            raise IllegalTransitionError(f"Challenge is already {current}")
        if not self.store.conditional_set_status(challenge_id, current, CANCELLED):
            raise ChallengeConflictError('Challenge changed while cancelling, try again')
        logger.info(f"[challenge-cancel] challenge={challenge_id} {current}->{CANCELLED}")
        self.channel.publish(challenge_id, STATUS_CHANGED, f"Challenge is now {CANCELLED}")
        return self.get(challenge_id)

    # ---- member actions ----

    def join(self, challenge_id, user_id: str, ticket_id: Optional[str]):
        if not ticket_id or not isinstance(ticket_id, str):
            raise MembershipError('Exactly one ticket id is required to join')

        def plan(challenge) -> Dict[str, Any]:
            if challenge.status not in OPEN_STATUSES:
                raise IllegalTransitionError(f"Cannot join a challenge that is {challenge.status}")
            members = list(challenge.member_ids or [])
            if user_id in members:
                raise MembershipError('Already a member of this challenge')
            if len(members) >= challenge.max_members:
                raise MembershipError('Challenge is full')
            self._check_ticket(ticket_id, user_id, challenge.game_id)
            game = self._game_status(challenge.game_id)
            if game is not None and (game.is_live or game.is_finished):
                raise IllegalTransitionError('Game has already started')

            members.append(user_id)
            tickets = dict(challenge.ticket_ids or {})
            tickets[user_id] = ticket_id
            changes = {
                'member_ids': members,
                'invited_user_ids': [u for u in (challenge.invited_user_ids or []) if u != user_id],
                'ticket_ids': tickets,
            }
            # Only pending -> active happens inline; later phases belong to the sync scheduler
            target = next_status(challenge.status, game, len(members), self.min_members)
            if target == ACTIVE and challenge.status != ACTIVE:
                changes['status'] = ACTIVE
            return changes

        before, after = self._apply(challenge_id, plan)
        logger.info(f"[challenge-join] challenge={challenge_id} user={user_id} members={after.member_count}")
        self.channel.publish(after.id, JOINED, f"{user_id} joined the challenge")
        if after.status != before:
            logger.info(f"[challenge-promote] challenge={challenge_id} {before}->{after.status}")
            self.channel.publish(after.id, STATUS_CHANGED, f"Challenge is now {after.status}")
        return after

    def leave(self, challenge_id, user_id: str):
        def plan(challenge) -> Dict[str, Any]:
            if challenge.status not in OPEN_STATUSES:
                raise IllegalTransitionError(f"Cannot leave a challenge that is {challenge.status}")
            if challenge.owner_id == user_id:
                raise MembershipError('The owner cannot leave; delete the challenge instead')
            members = list(challenge.member_ids or [])
            if user_id not in members:
                raise MembershipError('Not a member of this challenge')
            tickets = dict(challenge.ticket_ids or {})
            tickets.pop(user_id, None)
            return {
                'member_ids': [m for m in members if m != user_id],
                'ticket_ids': tickets,
            }

        _, after = self._apply(challenge_id, plan)
        logger.info(f"[challenge-leave] challenge={challenge_id} user={user_id} members={after.member_count}")
        self.channel.publish(after.id, LEFT, f"{user_id} left the challenge")
        return after

    def decline(self, challenge_id, user_id: str):
        def plan(challenge) -> Dict[str, Any]:
            invited = list(challenge.invited_user_ids or [])
            if user_id not in invited:
                raise MembershipError('No pending invitation for this user')
            return {'invited_user_ids': [u for u in invited if u != user_id]}

        _, after = self._apply(challenge_id, plan)
        logger.info(f"[challenge-decline] challenge={challenge_id} user={user_id}")
        self.channel.publish(after.id, DECLINED, f"{user_id} declined the invitation")
        return after

    # ---- helpers ----

    def _apply(self, challenge_id, plan: Callable[[Any], Dict[str, Any]]):
        """Read, validate via ``plan`` and write with a version check; returns (old status, challenge)."""
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            challenge = self.get(challenge_id)
            old_status, version = challenge.status, challenge.version
            changes = plan(challenge)
            updated = self.store.apply_membership_change(challenge_id, version, changes)
            if updated is not None:
                return old_status, updated
            logger.info(f"[challenge-conflict] challenge={challenge_id} attempt={attempt} version={version}")
        raise ChallengeConflictError('Challenge is being modified, try again')

    def _game_status(self, game_id):
        if self.provider is None:
            return None
        return self.provider.get_status(game_id)

    def _check_ticket(self, ticket_id: str, user_id: str, game_id: str) -> None:
        ticket = self.store.get_ticket(ticket_id)
        if ticket is None:
            raise MembershipError(f"Ticket {ticket_id} not found")
        if ticket.user_id != user_id:
            raise MembershipError('Ticket belongs to another user')
        if str(ticket.game_id) != str(game_id):
            raise MembershipError("Ticket is for a different game than the challenge")
