from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from ..auth import current_principal
from shared.errors import InvalidRequest

bp = Blueprint('registrations', __name__, url_prefix='/api/v1')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return data


def _int_field(data: dict, field: str) -> int:
    value = data.get(field)
    if isinstance(value, bool):
        raise InvalidRequest(f"'{field}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"'{field}' must be an integer")


def _player_ids(data: dict) -> list:
    raw = data.get('player_ids', [])
    if not isinstance(raw, list):
        raise InvalidRequest("'player_ids' must be a list of user ids")
    return [_int_field({'player_id': pid}, 'player_id') for pid in raw]


# ==================== Registration ====================

@bp.route('/tournaments/<int:tournament_id>/register', methods=['POST'])
@login_required
def register_team(tournament_id: int):
    """Register the caller's team for a tournament."""
    data = _json_body()
    registration = current_app.registrations.register(
        current_principal(),
        tournament_id,
        data.get('team_name'),
        _player_ids(data)
    )
    return jsonify({
        'message': 'Team registered',
        'registration': registration.to_dict()
    }), 201


@bp.route('/tournaments/<int:tournament_id>/registrations', methods=['GET'])
def list_tournament_registrations(tournament_id: int):
    status = request.args.get('status')
    registrations = current_app.registrations.list_for_tournament(tournament_id, status=status)
    return jsonify({
        'registrations': [r.to_dict() for r in registrations],
        'count': len(registrations)
    })


# ==================== Approval ====================

@bp.route('/registrations/<int:registration_id>/status', methods=['PUT'])
@login_required
def update_registration_status(registration_id: int):
    data = _json_body()
    status = data.get('status')
    if not status:
        raise InvalidRequest("'status' is required")

    position = _int_field(data, 'position') if data.get('position') is not None else None
    registration = current_app.registrations.update_status(
        current_principal(), registration_id, status, position=position
    )
    return jsonify(registration.to_dict())


# ==================== Roster ====================

@bp.route('/registrations/<int:registration_id>/players', methods=['POST'])
@login_required
def add_player(registration_id: int):
    data = _json_body()
    registration = current_app.registrations.add_player(
        current_principal(), registration_id, _int_field(data, 'player_id')
    )
    return jsonify(registration.to_dict())


@bp.route('/registrations/<int:registration_id>/players/<int:player_id>', methods=['DELETE'])
@login_required
def remove_player(registration_id: int, player_id: int):
    registration = current_app.registrations.remove_player(
        current_principal(), registration_id, player_id
    )
    return jsonify(registration.to_dict())


@bp.route('/registrations/<int:registration_id>', methods=['PUT'])
@login_required
def rename_registration(registration_id: int):
    data = _json_body()
    if 'team_name' not in data:
        raise InvalidRequest("'team_name' is required")
    registration = current_app.registrations.rename(
        current_principal(), registration_id, data['team_name']
    )
    return jsonify(registration.to_dict())


@bp.route('/registrations/<int:registration_id>', methods=['DELETE'])
@login_required
def withdraw_registration(registration_id: int):
    current_app.registrations.delete(current_principal(), registration_id)
    return jsonify({'message': 'Registration withdrawn'})


# ==================== Queries ====================

@bp.route('/registrations', methods=['GET'])
@login_required
def list_registrations():
    registrations = current_app.registrations.list_all(current_principal())
    return jsonify({
        'registrations': [r.to_dict() for r in registrations],
        'count': len(registrations)
    })


@bp.route('/registrations/<int:registration_id>', methods=['GET'])
def get_registration(registration_id: int):
    return jsonify(current_app.registrations.get(registration_id).to_dict())


@bp.route('/registrations/captain', methods=['GET'])
@login_required
def my_captained_registrations():
    registrations = current_app.registrations.list_for_captain(current_principal().subject_id)
    return jsonify({'registrations': [r.to_dict() for r in registrations]})


@bp.route('/registrations/player', methods=['GET'])
@login_required
def my_player_registrations():
    registrations = current_app.registrations.list_for_player(current_principal().subject_id)
    return jsonify({'registrations': [r.to_dict() for r in registrations]})
