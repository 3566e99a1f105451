from flask import current_app
from flask_socketio import join_room, leave_room, emit

from rinkside import socketio
from rinkside.services.realtime import NAMESPACE, challenge_room


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_join_challenge(data):
    challenge_id = (data or {}).get('challenge_id')
    if not challenge_id:
        emit('error', {'message': 'challenge_id is required'})
        return
    room = challenge_room(challenge_id)
    join_room(room)
    current_app.logger.debug(f"[room-join] room={room}")
    emit('joined_room', {'room': room, 'challengeId': challenge_id})


def handle_leave_challenge(data):
    challenge_id = (data or {}).get('challenge_id')
    if not challenge_id:
        emit('error', {'message': 'challenge_id is required'})
        return
    room = challenge_room(challenge_id)
    leave_room(room)
    current_app.logger.debug(f"[room-leave] room={room}")
    emit('left_room', {'room': room, 'challengeId': challenge_id})


def handle_ping(data):
    emit('pong', data or {})


_HANDLERS = (
    ('connect', handle_connect),
    ('join_challenge', handle_join_challenge),
    ('leave_challenge', handle_leave_challenge),
    ('ping', handle_ping),
)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    for event, handler in _HANDLERS:
        socketio.on_event(event, handler, namespace=NAMESPACE)

    if testing:
        # Test-only mirror on default namespace
        for event, handler in _HANDLERS:
            socketio.on_event(event, handler, namespace='/')
