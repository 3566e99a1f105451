"""SQLAlchemy access to challenge rows.

Every write is conditional: status changes require the stored status to still
match what the caller read, membership changes require the stored version to
match. A lost race shows up as ``False`` / ``None``, never as an exception.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from rinkside import db
from rinkside.models import Challenge, Ticket
from .lifecycle import PENDING, TERMINAL_STATUSES, IllegalTransitionError, is_forward_transition

# Columns a membership change may touch
MEMBERSHIP_FIELDS = frozenset({'member_ids', 'invited_user_ids', 'ticket_ids', 'status'})


def _now():
    return datetime.now(timezone.utc)


class ChallengeStore:

    def get(self, challenge_id) -> Optional[Challenge]:
        return Challenge.query.filter_by(id=str(challenge_id)).first()

    def get_ticket(self, ticket_id) -> Optional[Ticket]:
        return Ticket.query.filter_by(id=str(ticket_id)).first()

    def create(
        self,
        owner_id: str,
        game_id: str,
        title: str,
        description: Optional[str] = None,
        invited_user_ids: Iterable[str] = (),
        max_members: int = 10,
        ticket_id: Optional[str] = None,
        game_start_time: Optional[datetime] = None,
    ) -> Challenge:
        invited = sorted({str(u) for u in invited_user_ids} - {owner_id})
        challenge = Challenge(
            owner_id=owner_id,
            game_id=str(game_id),
            title=title,
            description=description,
            status=PENDING,
            member_ids=[owner_id],
            invited_user_ids=invited,
            ticket_ids={owner_id: ticket_id} if ticket_id else {},
            max_members=max_members,
            game_start_time=game_start_time,
        )
        db.session.add(challenge)
        db.session.commit()
        return challenge

    def delete(self, challenge_id) -> bool:
        rows = Challenge.query.filter_by(id=str(challenge_id)).delete(synchronize_session=False)
        db.session.commit()
        return rows == 1

    def list_for_user(self, user_id: str) -> List[Challenge]:
        # Membership lives in JSON columns; filter in Python to stay dialect-neutral
        challenges = Challenge.query.order_by(Challenge.created_at).all()
        return [
            c for c in challenges
            if c.owner_id == user_id or user_id in (c.member_ids or []) or user_id in (c.invited_user_ids or [])
        ]

    def list_tracked_game_ids(self) -> Set[str]:
        """Distinct game ids referenced by any non-terminal challenge."""
        rows = (
            db.session.query(Challenge.game_id)
            .filter(Challenge.status.notin_(sorted(TERMINAL_STATUSES)))
            .distinct()
            .all()
        )
        return {row[0] for row in rows}

    def list_challenges_for_game(self, game_id) -> List[Challenge]:
        return (
            Challenge.query
            .filter(Challenge.game_id == str(game_id))
            .filter(Challenge.status.notin_(sorted(TERMINAL_STATUSES)))
            .order_by(Challenge.created_at)
            .all()
        )

    def conditional_set_status(self, challenge_id, expected_status: str, new_status: str) -> bool:
        """Set status only if it still equals ``expected_status``.

        Backward moves and moves out of a terminal status are rejected before touching the row.
        """
        if expected_status == new_status:
            return False
        if not is_forward_transition(expected_status, new_status):
            raise IllegalTransitionError(f"Cannot move a challenge from {expected_status} to {new_status}")
        rows = (
            Challenge.query
            .filter_by(id=str(challenge_id), status=expected_status)
            .update(
                {
                    'status': new_status,
                    'version': Challenge.version + 1,
                    'updated_at': _now(),
                },
                synchronize_session=False,
            )
        )
        db.session.commit()
        return rows == 1

    def apply_membership_change(self, challenge_id, expected_version: int, changes: Dict[str, Any]) -> Optional[Challenge]:
        """Write membership fields only if the row is still at ``expected_version``.

        Returns the refreshed challenge, or ``None`` when another writer got there first.
        """
        unknown = set(changes) - MEMBERSHIP_FIELDS
        if unknown:
            raise ValueError(f"not a membership field: {', '.join(sorted(unknown))}")
        values = dict(changes)
        values['version'] = expected_version + 1
        values['updated_at'] = _now()
        rows = (
            Challenge.query
            .filter_by(id=str(challenge_id), version=expected_version)
            .update(values, synchronize_session=False)
        )
        db.session.commit()
        if rows != 1:
            return None
        return self.get(challenge_id)
