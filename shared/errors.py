"""
Error taxonomy for the registration core.

Every error carries a stable ``code`` and the HTTP status the boundary maps
it to. Only ``StorageUnavailable`` is retryable.
"""


class RegistrationError(Exception):
    code = "registration_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return self.code.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class Unauthenticated(RegistrationError):
    code = "unauthenticated"
    status_code = 401
    reason = "missing"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class TokenExpired(Unauthenticated):
    reason = "expired"

    def default_message(self) -> str:
        return "Token has expired"


class TokenMalformed(Unauthenticated):
    reason = "malformed"

    def default_message(self) -> str:
        return "Token is malformed"


class TokenBadSignature(Unauthenticated):
    reason = "bad_signature"

    def default_message(self) -> str:
        return "Token signature does not match"


class Forbidden(RegistrationError):
    code = "forbidden"
    status_code = 403


class NotFound(RegistrationError):
    code = "not_found"
    status_code = 404


class InvalidRequest(RegistrationError):
    code = "invalid_request"
    status_code = 400


class InvalidTeamName(RegistrationError):
    code = "invalid_team_name"
    status_code = 400


class InsufficientPlayers(RegistrationError):
    code = "insufficient_players"
    status_code = 400


class CannotRemoveCaptain(RegistrationError):
    code = "cannot_remove_captain"
    status_code = 400

    def default_message(self) -> str:
        return "The captain cannot be removed from the roster"


class RegistrationClosed(RegistrationError):
    code = "registration_closed"
    status_code = 409


class DuplicateTeamName(RegistrationError):
    code = "duplicate_team_name"
    status_code = 409


class TournamentFull(RegistrationError):
    code = "tournament_full"
    status_code = 409


class EmailTaken(RegistrationError):
    code = "email_taken"
    status_code = 409


class InvalidStateTransition(RegistrationError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(reason or f"Cannot transition from {from_state} to {to_state}")


class StorageUnavailable(RegistrationError):
    code = "storage_unavailable"
    status_code = 503
    retryable = True
