"""
Bearer-token authentication for the HTTP boundary.

Flask-Login is used only as a per-request loader: every request is
authenticated from its ``Authorization: Bearer`` header and nothing is
kept in the session.
"""
import logging
from typing import Optional

from flask import current_app, g, jsonify
from flask_login import LoginManager, UserMixin, current_user

from shared.errors import Unauthenticated
from shared.policy import Principal

logger = logging.getLogger(__name__)

login_manager = LoginManager()


class AuthenticatedPrincipal(UserMixin):
    def __init__(self, principal: Principal):
        self.principal = principal

    def get_id(self):
        return str(self.principal.subject_id)


def bearer_token(req) -> Optional[str]:
    header = req.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[7:].strip() or None
    return None


def clear_request_identity():
    """Drop identity cached on ``g`` so each request authenticates from its own header."""
    g.pop('_login_user', None)
    g.pop('auth_error', None)


@login_manager.request_loader
def load_principal_from_request(req):
    token = bearer_token(req)
    if token is None:
        return None

    try:
        principal = current_app.tokens.verify(token)
    except Unauthenticated as e:
        logger.warning(f"Rejected bearer token ({e.reason}) for {req.path}")
        g.auth_error = e
        return None

    return AuthenticatedPrincipal(principal)


@login_manager.unauthorized_handler
def unauthorized():
    error = g.get('auth_error') or Unauthenticated("Authentication required")
    return jsonify(error.to_dict()), error.status_code


def current_principal() -> Optional[Principal]:
    """The verified principal of the current request, or None."""
    if current_user and current_user.is_authenticated:
        return current_user.principal
    return None
