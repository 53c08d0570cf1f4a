from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from ..auth import current_principal
from .registrations import _json_body
from shared.errors import InvalidRequest

bp = Blueprint('tournaments', __name__, url_prefix='/api/v1')

TOURNAMENT_FIELDS = ('name', 'date', 'location', 'level', 'description', 'registration_open', 'max_teams')


def _tournament_list(tournaments):
    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments)
    })


@bp.route('/tournaments', methods=['GET'])
def list_tournaments():
    """List tournaments with optional filtering."""
    status = request.args.get('status')
    limit = max(request.args.get('limit', 50, type=int), 0)
    offset = max(request.args.get('offset', 0, type=int), 0)

    tournaments = current_app.tournaments.list_tournaments(
        status=status,
        limit=limit,
        offset=offset
    )

    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments),
        'limit': limit,
        'offset': offset
    })


@bp.route('/tournaments/search', methods=['GET'])
def search_tournaments():
    return _tournament_list(current_app.tournaments.search_tournaments(request.args.get('query')))


@bp.route('/tournaments/level/<level>', methods=['GET'])
def tournaments_by_level(level: str):
    return _tournament_list(current_app.tournaments.list_by_level(level))


@bp.route('/tournaments/upcoming', methods=['GET'])
def upcoming_tournaments():
    return _tournament_list(current_app.tournaments.list_upcoming())


@bp.route('/tournaments/past', methods=['GET'])
def past_tournaments():
    return _tournament_list(current_app.tournaments.list_past())


@bp.route('/tournaments', methods=['POST'])
@login_required
def create_tournament():
    data = _json_body()
    fields = {k: data[k] for k in TOURNAMENT_FIELDS if k in data}
    name = fields.pop('name', None)
    tournament = current_app.tournaments.create_tournament(current_principal(), name, **fields)
    return jsonify({
        'message': 'Tournament created',
        'tournament': tournament.to_dict()
    }), 201


@bp.route('/tournaments/<int:tournament_id>', methods=['GET'])
def get_tournament(tournament_id: int):
    return jsonify(current_app.tournaments.get_tournament(tournament_id).to_dict())


@bp.route('/tournaments/<int:tournament_id>', methods=['PUT'])
@login_required
def update_tournament(tournament_id: int):
    changes = _json_body()
    tournament = current_app.tournaments.update_tournament(current_principal(), tournament_id, changes)
    return jsonify(tournament.to_dict())


@bp.route('/tournaments/<int:tournament_id>/status', methods=['POST'])
@login_required
def change_tournament_status(tournament_id: int):
    data = _json_body()
    if not data.get('status'):
        raise InvalidRequest("'status' is required")
    tournament = current_app.tournaments.change_status(current_principal(), tournament_id, data['status'])
    return jsonify(tournament.to_dict())
