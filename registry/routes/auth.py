from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from ..auth import bearer_token, current_principal
from .registrations import _json_body
from shared.errors import Unauthenticated

bp = Blueprint('auth', __name__, url_prefix='/api/v1')


def _token_response(user, token: str, expires_at: int, status: int = 200):
    return jsonify({
        'token': token,
        'token_type': 'Bearer',
        'expires_at': expires_at,
        'user': user.to_dict() if user is not None else None
    }), status


@bp.route('/auth/register', methods=['POST'])
def register_user():
    data = _json_body()
    user = current_app.accounts.register_user(
        email=data.get('email'),
        password=data.get('password'),
        name=data.get('name')
    )
    token, expires_at = current_app.tokens.issue(user.id, user.role_enum)
    return _token_response(user, token, expires_at, status=201)


@bp.route('/auth/login', methods=['POST'])
def login():
    data = _json_body()
    user, token, expires_at = current_app.accounts.authenticate(data.get('email'), data.get('password'))
    return _token_response(user, token, expires_at)


@bp.route('/auth/refresh-token', methods=['POST'])
def refresh_token():
    """Re-issue the presented token with a new expiry. Logout is client-side."""
    token = bearer_token(request)
    if token is None:
        raise Unauthenticated("Bearer token required")
    new_token, expires_at = current_app.tokens.refresh(token)
    return _token_response(None, new_token, expires_at)


@bp.route('/users/me', methods=['GET'])
@login_required
def get_me():
    return jsonify(current_app.accounts.get_me(current_principal()).to_dict())


@bp.route('/users/me', methods=['PUT'])
@login_required
def update_me():
    user = current_app.accounts.update_me(current_principal(), _json_body())
    return jsonify(user.to_dict())


@bp.route('/users/<int:user_id>', methods=['GET'])
@login_required
def get_user(user_id: int):
    return jsonify(current_app.accounts.get_user(current_principal(), user_id).to_dict())


@bp.route('/users/<int:user_id>/role', methods=['PUT'])
@login_required
def change_role(user_id: int):
    data = _json_body()
    user = current_app.accounts.change_role(current_principal(), user_id, data.get('role'))
    return jsonify(user.to_dict())
