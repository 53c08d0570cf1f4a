import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from .models import db, Registration, Team, Tournament, TournamentTeam, User
from shared.errors import (
    CannotRemoveCaptain,
    DuplicateTeamName,
    EmailTaken,
    Forbidden,
    InvalidRequest,
    InvalidStateTransition,
    NotFound,
    StorageUnavailable,
    Unauthenticated,
)
from shared.events import (
    registration_created_event,
    registration_renamed_event,
    registration_status_event,
    registration_withdrawn_event,
    roster_changed_event,
)
from shared.policy import Principal, is_admin, is_team_captain_or_admin
from shared.pubsub import EventPublisher
from shared.state_machine import (
    RegistrationRules,
    TeamStatus,
    TeamStatusMachine,
    check_capacity,
    check_registration_open,
    normalize_players,
    validate_team_name,
)

logger = logging.getLogger(__name__)


def integrity_error_to_domain(error: IntegrityError):
    message = str(error.orig)
    if 'uq_registration_team_name' in message or 'team_name' in message:
        return DuplicateTeamName("A team with this name is already registered for the tournament")
    if 'users.email' in message or 'users_email' in message:
        return EmailTaken("An account with this email already exists")
    if 'uq_tournament_team' in message or 'tournament_teams' in message:
        return DuplicateTeamName("This team is already registered for the tournament")
    return InvalidRequest("Conflicting registration data")


@contextmanager
def unit_of_work():
    """
    Run a block as one transaction: commit on success, roll back on any
    exception (including cancellation) and translate storage failures.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise integrity_error_to_domain(e) from e
    except DataError as e:
        db.session.rollback()
        logger.warning(f"Rejected value at storage: {e.orig}")
        raise InvalidRequest("A value is too long or malformed for storage") from e
    except (OperationalError, PoolTimeoutError) as e:
        db.session.rollback()
        logger.error(f"Storage unavailable: {e}")
        raise StorageUnavailable() from e
    except DBAPIError as e:
        db.session.rollback()
        if e.connection_invalidated:
            logger.error(f"Storage connection lost: {e}")
            raise StorageUnavailable() from e
        raise
    except BaseException:
        db.session.rollback()
        raise


def require_principal(principal: Optional[Principal]) -> Principal:
    if principal is None:
        raise Unauthenticated("Authentication required")
    return principal


def parse_team_status(value, current: str = "unknown") -> TeamStatus:
    try:
        return TeamStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidStateTransition(current, str(value), f"Unknown registration status '{value}'")


class RegistrationService:
    """
    Registration workflow against storage.

    Every mutation authorizes first, then validates and writes inside a
    single transaction. Events go out only after commit.
    """

    ROSTER_EDITABLE = (TeamStatus.PENDING, TeamStatus.APPROVED)

    def __init__(self, rules: RegistrationRules = None, publisher: EventPublisher = None):
        self.rules = rules or RegistrationRules()
        self.publisher = publisher or EventPublisher()

    # ==================== Lookups ====================

    def _get_registration(self, registration_id: int) -> Optional[Registration]:
        return db.session.get(Registration, registration_id)

    def _authorized_registration(self, principal: Principal, registration_id: int) -> Registration:
        """Load a registration the principal may mutate.

        Non-owners get Forbidden whether or not the registration exists.
        """
        registration = self._get_registration(registration_id)
        snapshot = registration.snapshot() if registration else None

        if not is_team_captain_or_admin(principal, snapshot):
            logger.warning(
                f"Denied user {principal.subject_id} ({principal.role.value}) "
                f"on registration {registration_id}"
            )
            raise Forbidden("Only the team captain or an admin can modify this registration")

        if registration is None:
            raise NotFound(f"Registration {registration_id} not found")
        return registration

    def _lock_entry(self, registration: Registration) -> TournamentTeam:
        return (
            db.session.query(TournamentTeam)
            .filter_by(id=registration.tournament_team_id)
            .with_for_update()
            .one()
        )

    # ==================== Registration ====================

    def register(self, principal: Principal, tournament_id: int, team_name: str, player_ids) -> Registration:
        principal = require_principal(principal)
        captain_id = principal.subject_id

        with unit_of_work():
            tournament = (
                db.session.query(Tournament)
                .filter_by(id=tournament_id)
                .with_for_update()
                .first()
            )
            if tournament is None:
                raise NotFound(f"Tournament {tournament_id} not found")

            check_registration_open(tournament.status, tournament.registration_open)
            name = validate_team_name(team_name, self.rules)
            roster = normalize_players(captain_id, player_ids, self.rules)

            users = User.query.filter(User.id.in_(roster)).all()
            missing = sorted(set(roster) - {u.id for u in users})
            if missing:
                raise NotFound(f"Users not found: {missing}")

            active = TournamentTeam.query.filter(
                TournamentTeam.tournament_id == tournament.id,
                TournamentTeam.status != TeamStatus.REJECTED.value,
            ).count()
            check_capacity(tournament.max_teams, active, self.rules)

            team = Team(name=name, players=users)
            entry = TournamentTeam(tournament=tournament, team=team, status=TeamStatus.PENDING.value)
            registration = Registration(
                tournament=tournament,
                team_name=name,
                captain_id=captain_id,
                team=team,
                tournament_team=entry,
            )
            db.session.add_all([team, entry, registration])
            # The unique constraint decides duplicate names; no pre-check.
            db.session.flush()

        logger.info(f"Registered team '{name}' for tournament {tournament_id} (registration {registration.id})")
        self.publisher.publish_tournament_event(
            registration_created_event(tournament_id, registration.id, name)
        )
        return registration

    # ==================== Approval ====================

    def update_status(self, principal: Principal, registration_id: int, new_status, position: int = None) -> Registration:
        principal = require_principal(principal)
        if not is_admin(principal):
            logger.warning(f"Denied status change on registration {registration_id} by user {principal.subject_id}")
            raise Forbidden("Only admins can change registration status")

        target = parse_team_status(new_status)
        if position is not None and target != TeamStatus.COMPLETED:
            raise InvalidRequest("A position can only be recorded when completing a registration")
        if position is not None and position < 1:
            raise InvalidRequest("position must be positive")

        changed = placed = False
        with unit_of_work():
            registration = self._get_registration(registration_id)
            if registration is None:
                raise NotFound(f"Registration {registration_id} not found")

            entry = registration.tournament_team
            current = TeamStatus(entry.status)
            if target == current:
                # Entries completed with their tournament get their placing here
                if position is not None:
                    placed = self._record_position(entry, position)
            else:
                sm = TeamStatusMachine(current)
                sm.transition_to(target, {'tournament_status': registration.tournament.status})
                changed = self._apply_transition(entry, current, target, position)

        if changed:
            logger.info(f"Registration {registration_id}: {current.value} -> {target.value}")
            self.publisher.publish_tournament_event(
                registration_status_event(registration.tournament_id, registration_id, current.value, target.value)
            )
        elif placed:
            logger.info(f"Registration {registration_id} placed {position}")
        return registration

    def _apply_transition(self, entry: TournamentTeam, current: TeamStatus, target: TeamStatus, position: int = None) -> bool:
        """Compare-and-set the entry status; side effects run only for the winner."""
        values = {'status': target.value}
        if position is not None:
            values['position'] = position

        rows = (
            db.session.query(TournamentTeam)
            .filter(TournamentTeam.id == entry.id, TournamentTeam.status == current.value)
            .update(values, synchronize_session=False)
        )
        if rows == 0:
            db.session.refresh(entry)
            if entry.status == target.value:
                if position is not None:
                    self._record_position(entry, position)
                return False
            raise InvalidStateTransition(entry.status, target.value)

        if target == TeamStatus.APPROVED:
            db.session.query(Team).filter(Team.id == entry.team_id).update(
                {'tournaments_played': Team.tournaments_played + 1}, synchronize_session=False
            )
        elif target == TeamStatus.COMPLETED and position == 1:
            db.session.query(Team).filter(Team.id == entry.team_id).update(
                {'tournaments_won': Team.tournaments_won + 1}, synchronize_session=False
            )

        team = entry.team
        db.session.expire(entry)
        db.session.expire(team)
        return True

    def _record_position(self, entry: TournamentTeam, position: int) -> bool:
        """Set the placing of a COMPLETED entry once. A different placing is rejected."""
        if entry.position == position:
            return False

        rows = (
            db.session.query(TournamentTeam)
            .filter(
                TournamentTeam.id == entry.id,
                TournamentTeam.status == TeamStatus.COMPLETED.value,
                TournamentTeam.position.is_(None),
            )
            .update({'position': position}, synchronize_session=False)
        )
        if rows == 0:
            db.session.refresh(entry)
            if entry.position == position:
                return False
            raise InvalidRequest(f"Registration already has position {entry.position}")

        if position == 1:
            db.session.query(Team).filter(Team.id == entry.team_id).update(
                {'tournaments_won': Team.tournaments_won + 1}, synchronize_session=False
            )

        team = entry.team
        db.session.expire(entry)
        db.session.expire(team)
        return True

    def complete_for_tournament(self, tournament_id: int) -> int:
        """Move every APPROVED entry of a completed tournament to COMPLETED.

        Runs inside the caller's transaction.
        """
        rows = (
            db.session.query(TournamentTeam)
            .filter(
                TournamentTeam.tournament_id == tournament_id,
                TournamentTeam.status == TeamStatus.APPROVED.value,
            )
            .update({'status': TeamStatus.COMPLETED.value}, synchronize_session=False)
        )
        db.session.expire_all()
        return rows

    # ==================== Roster ====================

    def _check_roster_editable(self, entry: TournamentTeam):
        if TeamStatus(entry.status) not in self.ROSTER_EDITABLE:
            raise InvalidStateTransition(
                entry.status, entry.status, f"Roster is locked once a registration is {entry.status}"
            )

    def add_player(self, principal: Principal, registration_id: int, player_id: int) -> Registration:
        principal = require_principal(principal)

        changed = False
        with unit_of_work():
            registration = self._authorized_registration(principal, registration_id)
            self._check_roster_editable(self._lock_entry(registration))

            player = db.session.get(User, player_id)
            if player is None:
                raise NotFound(f"User {player_id} not found")

            if player not in registration.team.players:
                registration.team.players.append(player)
                changed = True

        if changed:
            logger.info(f"Added player {player_id} to registration {registration_id}")
            self.publisher.publish_tournament_event(
                roster_changed_event(registration.tournament_id, registration_id, registration.player_ids)
            )
        return registration

    def remove_player(self, principal: Principal, registration_id: int, player_id: int) -> Registration:
        principal = require_principal(principal)

        changed = False
        with unit_of_work():
            registration = self._authorized_registration(principal, registration_id)
            if player_id == registration.captain_id:
                raise CannotRemoveCaptain()
            self._check_roster_editable(self._lock_entry(registration))

            player = next((p for p in registration.team.players if p.id == player_id), None)
            if player is not None:
                registration.team.players.remove(player)
                changed = True

        if changed:
            logger.info(f"Removed player {player_id} from registration {registration_id}")
            self.publisher.publish_tournament_event(
                roster_changed_event(registration.tournament_id, registration_id, registration.player_ids)
            )
        return registration

    def rename(self, principal: Principal, registration_id: int, team_name: str) -> Registration:
        principal = require_principal(principal)

        with unit_of_work():
            registration = self._authorized_registration(principal, registration_id)
            self._check_roster_editable(self._lock_entry(registration))
            name = validate_team_name(team_name, self.rules)

            old_name = registration.team_name
            if name == old_name:
                return registration
            registration.team_name = name
            registration.team.name = name
            # uq_registration_team_name decides conflicts
            db.session.flush()

        logger.info(f"Registration {registration_id} renamed '{old_name}' -> '{name}'")
        self.publisher.publish_tournament_event(
            registration_renamed_event(registration.tournament_id, registration_id, old_name, name)
        )
        return registration

    # ==================== Withdrawal ====================

    def delete(self, principal: Principal, registration_id: int) -> None:
        """Withdraw a pending registration. Rows are kept as REJECTED."""
        principal = require_principal(principal)

        with unit_of_work():
            registration = self._authorized_registration(principal, registration_id)
            if registration.withdrawn_at is not None:
                return

            entry = self._lock_entry(registration)
            current = TeamStatus(entry.status)
            TeamStatusMachine(current).transition('reject')
            self._apply_transition(entry, current, TeamStatus.REJECTED)
            registration.withdrawn_at = datetime.utcnow()

        logger.info(f"Registration {registration_id} withdrawn by user {principal.subject_id}")
        self.publisher.publish_tournament_event(
            registration_withdrawn_event(registration.tournament_id, registration_id)
        )

    # ==================== Queries ====================

    def get(self, registration_id: int) -> Registration:
        registration = self._get_registration(registration_id)
        if registration is None:
            raise NotFound(f"Registration {registration_id} not found")
        return registration

    def list_all(self, principal: Principal) -> List[Registration]:
        principal = require_principal(principal)
        if not is_admin(principal):
            raise Forbidden("Only admins can list all registrations")
        return Registration.query.order_by(Registration.id).all()

    def list_for_tournament(self, tournament_id: int, status: str = None) -> List[Registration]:
        if db.session.get(Tournament, tournament_id) is None:
            raise NotFound(f"Tournament {tournament_id} not found")

        query = Registration.query.filter(Registration.tournament_id == tournament_id)
        if status:
            target = parse_team_status(status)
            query = query.join(TournamentTeam, Registration.tournament_team_id == TournamentTeam.id)
            query = query.filter(TournamentTeam.status == target.value)
        return query.order_by(Registration.id).all()

    def list_for_captain(self, captain_id: int) -> List[Registration]:
        return Registration.query.filter_by(captain_id=captain_id).order_by(Registration.id).all()

    def list_for_player(self, player_id: int) -> List[Registration]:
        return (
            Registration.query
            .join(Team, Registration.team_id == Team.id)
            .filter(Team.players.any(User.id == player_id))
            .order_by(Registration.id)
            .all()
        )
