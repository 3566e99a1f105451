from datetime import datetime, timezone
import uuid

from sqlalchemy.orm import validates

from rinkside import db


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id():
    return uuid.uuid4().hex


class Challenge(db.Model):
    __tablename__ = 'challenge'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    title = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    game_id = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default='pending', index=True)  # pending, active, live, finished, cancelled
    member_ids = db.Column(db.JSON, nullable=False, default=list)
    invited_user_ids = db.Column(db.JSON, nullable=False, default=list)
    ticket_ids = db.Column(db.JSON, nullable=False, default=dict)  # member id -> ticket id
    max_members = db.Column(db.Integer, nullable=False, default=10)
    game_start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    # Bumped on every write; compare-and-swap token for membership changes
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @validates('game_id')
    def _validate_game_id(self, key, value):
        if self.game_id is not None and str(value) != self.game_id:
            raise ValueError('game_id cannot change once a challenge exists')
        return str(value)

    @property
    def member_count(self):
        return len(self.member_ids or [])

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'ownerId': self.owner_id,
            'gameId': self.game_id,
            'status': self.status,
            'memberIds': list(self.member_ids or []),
            'invitedUserIds': list(self.invited_user_ids or []),
            'ticketIds': dict(self.ticket_ids or {}),
            'maxMembers': self.max_members,
            'gameStartTime': self.game_start_time.isoformat() if self.game_start_time else None,
            'version': self.version,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }


class Ticket(db.Model):
    """Bingo ticket row; owned by the ticket CRUD layer, read-only here."""
    __tablename__ = 'ticket'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    game_id = db.Column(db.String(32), nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'name': self.name,
            'gameId': self.game_id,
        }
