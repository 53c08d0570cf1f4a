import logging
from datetime import date
from typing import Optional, List

from .models import db, Tournament
from .registration_service import RegistrationService, unit_of_work, require_principal
from shared.errors import Forbidden, InvalidRequest, NotFound
from shared.events import tournament_created_event, tournament_status_event
from shared.policy import Principal, is_admin
from shared.pubsub import EventPublisher
from shared.state_machine import TournamentStateMachine, TournamentStatus

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'date', 'location', 'level', 'description', 'registration_open', 'max_teams')
MAX_NAME_LENGTH = 200


def _parse_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"Invalid date '{value}', expected YYYY-MM-DD")


def _clean_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidRequest("Tournament name is required")
    if len(name.strip()) > MAX_NAME_LENGTH:
        raise InvalidRequest(f"Tournament name must be at most {MAX_NAME_LENGTH} characters")
    return name.strip()


def _parse_max_teams(value) -> Optional[int]:
    if value is None:
        return None
    try:
        max_teams = int(value)
    except (TypeError, ValueError):
        raise InvalidRequest("max_teams must be an integer")
    if max_teams < 1:
        raise InvalidRequest("max_teams must be positive")
    return max_teams


class TournamentRegistry:
    """
    Admin-managed tournament lifecycle:
    - Create/update tournament records
    - Move tournaments through UPCOMING -> ONGOING -> COMPLETED (or CANCELLED)
    - Complete approved entries when a tournament completes
    """

    def __init__(self, registrations: RegistrationService = None, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()
        self.registrations = registrations or RegistrationService(publisher=self.publisher)

    def _require_admin(self, principal: Optional[Principal], action: str):
        principal = require_principal(principal)
        if not is_admin(principal):
            logger.warning(f"Denied '{action}' for user {principal.subject_id}")
            raise Forbidden(f"Only admins can {action}")

    def create_tournament(
        self,
        principal: Principal,
        name: str,
        date=None,
        location: str = None,
        level: str = None,
        description: str = None,
        registration_open: bool = True,
        max_teams: int = None
    ) -> Tournament:
        """Create a new tournament in UPCOMING state."""
        self._require_admin(principal, "create tournaments")
        name = _clean_name(name)

        with unit_of_work():
            tournament = Tournament(
                name=name,
                date=_parse_date(date),
                location=location,
                level=level,
                description=description,
                status=TournamentStatus.UPCOMING.value,
                registration_open=bool(registration_open),
                max_teams=_parse_max_teams(max_teams)
            )
            db.session.add(tournament)
            db.session.flush()

        logger.info(f"Created tournament {tournament.id} '{tournament.name}'")
        self.publisher.publish_tournament_event(
            tournament_created_event(tournament.id, tournament.name)
        )
        return tournament

    def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = db.session.get(Tournament, tournament_id)
        if tournament is None:
            raise NotFound(f"Tournament {tournament_id} not found")
        return tournament

    def list_tournaments(
        self,
        status: str = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Tournament]:
        """List tournaments with optional status filtering."""
        query = Tournament.query

        if status:
            try:
                query = query.filter_by(status=TournamentStatus(status.upper()).value)
            except ValueError:
                raise InvalidRequest(f"Unknown tournament status '{status}'")

        query = query.order_by(Tournament.date.desc(), Tournament.id.desc())
        return query.offset(max(offset, 0)).limit(max(limit, 0)).all()

    def search_tournaments(self, query: str) -> List[Tournament]:
        """Case-insensitive substring match on the tournament name."""
        term = (query or '').strip()
        if not term:
            return []
        pattern = f"%{term}%"
        return (
            Tournament.query
            .filter(Tournament.name.ilike(pattern))
            .order_by(Tournament.date.desc(), Tournament.id.desc())
            .all()
        )

    def list_by_level(self, level: str) -> List[Tournament]:
        level = (level or '').strip()
        if not level:
            return []
        return (
            Tournament.query
            .filter(db.func.lower(Tournament.level) == level.lower())
            .order_by(Tournament.date.desc(), Tournament.id.desc())
            .all()
        )

    def list_upcoming(self, today: date = None) -> List[Tournament]:
        """UPCOMING tournaments dated today or later, soonest first."""
        today = today or date.today()
        return (
            Tournament.query
            .filter(
                Tournament.status == TournamentStatus.UPCOMING.value,
                Tournament.date >= today
            )
            .order_by(Tournament.date.asc(), Tournament.id.asc())
            .all()
        )

    def list_past(self, today: date = None) -> List[Tournament]:
        """COMPLETED tournaments dated before today, most recent first."""
        today = today or date.today()
        return (
            Tournament.query
            .filter(
                Tournament.status == TournamentStatus.COMPLETED.value,
                Tournament.date < today
            )
            .order_by(Tournament.date.desc(), Tournament.id.desc())
            .all()
        )

    def update_tournament(self, principal: Principal, tournament_id: int, changes: dict) -> Tournament:
        """Apply a partial update. Keys outside EDITABLE_FIELDS are rejected."""
        self._require_admin(principal, "update tournaments")
        if not isinstance(changes, dict):
            raise InvalidRequest("Tournament changes must be an object")
        changes = dict(changes)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidRequest(f"Cannot update fields: {sorted(unknown)}")

        with unit_of_work():
            tournament = self.get_tournament(tournament_id)
            if 'name' in changes:
                changes['name'] = _clean_name(changes['name'])
            if 'date' in changes:
                changes['date'] = _parse_date(changes['date'])
            if 'max_teams' in changes:
                changes['max_teams'] = _parse_max_teams(changes['max_teams'])
            if 'registration_open' in changes:
                changes['registration_open'] = bool(changes['registration_open'])

            for field, value in changes.items():
                setattr(tournament, field, value)

        logger.info(f"Updated tournament {tournament_id}: {sorted(changes)}")
        return tournament

    def change_status(self, principal: Principal, tournament_id: int, new_status) -> Tournament:
        """Move a tournament along its lifecycle; completing it completes approved entries."""
        self._require_admin(principal, "change tournament status")

        completed_entries = 0
        with unit_of_work():
            tournament = (
                db.session.query(Tournament)
                .filter_by(id=tournament_id)
                .with_for_update()
                .first()
            )
            if tournament is None:
                raise NotFound(f"Tournament {tournament_id} not found")

            old_state = tournament.status
            sm = TournamentStateMachine(old_state)
            target = str(new_status or '').strip().upper()
            if target == old_state:
                return tournament
            new_state = sm.transition_to(target)

            tournament.status = new_state.value
            if new_state != TournamentStatus.UPCOMING:
                tournament.registration_open = False
            if new_state == TournamentStatus.COMPLETED:
                db.session.flush()
                completed_entries = self.registrations.complete_for_tournament(tournament.id)

        logger.info(
            f"Tournament {tournament_id}: {old_state} -> {new_state.value}"
            + (f" ({completed_entries} entries completed)" if completed_entries else "")
        )
        self.publisher.publish_tournament_event(
            tournament_status_event(tournament_id, old_state, new_state.value)
        )
        return tournament
