from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from rinkside.services.lifecycle import ChallengeError


challenges = Blueprint('challenges', __name__)


def _membership():
    return current_app.extensions['membership']


def _user_id(data):
    user_id = (data or {}).get('user_id')
    return str(user_id) if user_id else None


@challenges.errorhandler(ChallengeError)
def handle_challenge_error(exc):
    return jsonify({'error': str(exc)}), exc.status_code


@challenges.route('/games/<string:game_id>/status', methods=['GET'])
def get_game_status(game_id):
    provider = current_app.extensions['game_status_provider']
    status = provider.get_status(game_id)
    if status is None:
        return jsonify({'error': f'Status for game {game_id} is unavailable'}), 404
    payload = status.to_dict()
    try:
        payload['timeUntilStartSec'] = int(provider.get_time_until_start(status.start_time_utc).total_seconds())
    except ValueError:
        payload['timeUntilStartSec'] = None
    return jsonify(payload)


@challenges.route('/challenges', methods=['POST'])
def create_challenge():
    data = request.get_json(silent=True) or {}
    owner_id = _user_id(data)
    game_id = data.get('gameId')
    title = data.get('title')
    if not all([owner_id, game_id, title]):
        return jsonify({'error': 'user_id, gameId and title are required'}), 400

    start = data.get('gameStartTime')
    try:
        game_start_time = datetime.fromisoformat(start.replace('Z', '+00:00')) if start else None
    except (AttributeError, ValueError):
        return jsonify({'error': 'gameStartTime must be an ISO-8601 timestamp'}), 400

    invited = data.get('invitedUserIds') or []
    if not isinstance(invited, list):
        return jsonify({'error': 'invitedUserIds must be a list of user ids'}), 400

    challenge = _membership().create(
        owner_id=owner_id,
        game_id=str(game_id),
        title=title,
        description=data.get('description'),
        invited_user_ids=invited,
        max_members=data.get('maxMembers'),
        ticket_id=data.get('ticketId'),
        game_start_time=game_start_time,
    )
    return jsonify(challenge.to_dict()), 201


@challenges.route('/challenges', methods=['GET'])
def list_challenges():
    user_id = request.args.get('user_id')
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400
    grouped = _membership().list_for_user(user_id)
    return jsonify({status: [c.to_dict() for c in items] for status, items in grouped.items()})


@challenges.route('/challenges/<string:challenge_id>', methods=['GET'])
def get_challenge(challenge_id):
    return jsonify(_membership().get(challenge_id).to_dict())


@challenges.route('/challenges/<string:challenge_id>', methods=['DELETE'])
def delete_challenge(challenge_id):
    user_id = _user_id(request.get_json(silent=True))
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400
    _membership().delete(challenge_id, user_id)
    return jsonify({'message': 'Challenge deleted'})


@challenges.route('/challenges/<string:challenge_id>/cancel', methods=['POST'])
def cancel_challenge(challenge_id):
    user_id = _user_id(request.get_json(silent=True))
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400
    return jsonify(_membership().cancel(challenge_id, user_id).to_dict())


@challenges.route('/challenges/<string:challenge_id>/join', methods=['POST'])
def join_challenge(challenge_id):
    data = request.get_json(silent=True) or {}
    user_id = _user_id(data)
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400
    challenge = _membership().join(challenge_id, user_id, data.get('ticketId'))
    return jsonify(challenge.to_dict())


@challenges.route('/challenges/<string:challenge_id>/leave', methods=['POST'])
def leave_challenge(challenge_id):
    user_id = _user_id(request.get_json(silent=True))
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400
    return jsonify(_membership().leave(challenge_id, user_id).to_dict())


@challenges.route('/challenges/<string:challenge_id>/decline', methods=['POST'])
def decline_invitation(challenge_id):
    user_id = _user_id(request.get_json(silent=True))
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400
    return jsonify(_membership().decline(challenge_id, user_id).to_dict())
