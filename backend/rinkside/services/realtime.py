"""Per-challenge change notifications over Socket.IO rooms.

Clients join ``challenge:<id>`` on the ``/ws`` namespace and re-fetch the
challenge over REST whenever a notification arrives. Delivery is
best-effort; nothing here is a system of record.
"""

import logging

logger = logging.getLogger(__name__)

NAMESPACE = '/ws'
EVENT_NAME = 'challenge_updated'

STATUS_CHANGED = 'status_changed'
JOINED = 'joined'
LEFT = 'left'
DECLINED = 'declined'
CREATED = 'created'
DELETED = 'deleted'
EVENT_TYPES = frozenset({STATUS_CHANGED, JOINED, LEFT, DECLINED, CREATED, DELETED})


def challenge_room(challenge_id) -> str:
    return f"challenge:{challenge_id}"


class RealtimeChannel:
    def __init__(self, socketio, namespace: str = NAMESPACE) -> None:
        self.socketio = socketio
        self.namespace = namespace

    def publish(self, challenge_id, event_type: str, message: str) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown challenge event type: {event_type}")
        payload = {'type': event_type, 'challengeId': challenge_id, 'message': message}
        try:
            self.socketio.emit(EVENT_NAME, payload, to=challenge_room(challenge_id), namespace=self.namespace)
        except Exception:
            # Subscribers recover by re-reading state on their next signal
            logger.exception(f"[publish-failed] challenge={challenge_id} type={event_type}")
            return
        logger.debug(f"[publish] challenge={challenge_id} type={event_type}")
