"""
Concurrent writers against an on-disk SQLite database.

Each worker runs in its own thread with its own app context, and so its
own session and connection, the way request handlers do.
"""
import threading

from registry.models import db, Registration, Team, Tournament, User
from registry.registration_service import RegistrationService
from shared.errors import DuplicateTeamName, RegistrationError
from shared.policy import Principal, Role
from shared.state_machine import TeamStatus, TournamentStatus


def _user(email: str, role: Role = Role.USER) -> User:
    user = User(email=email, name=email.split('@')[0], role=role.value)
    user.set_password('secret123')
    db.session.add(user)
    return user


def run_concurrently(app, *calls):
    """Run each call in its own thread and app context; return results in call order."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, call):
        with app.app_context():
            barrier.wait()
            try:
                results[index] = call()
            except RegistrationError as e:
                results[index] = e
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert not any(thread.is_alive() for thread in threads)
    return results


class TestConcurrentRegistration:

    def test_same_team_name_registered_once(self, file_app):
        captains = [_user('first@example.com'), _user('second@example.com')]
        roster = [_user(f'player{i}@example.com') for i in range(4)]
        tournament = Tournament(
            name='Night Court Classic',
            status=TournamentStatus.UPCOMING.value,
            registration_open=True
        )
        db.session.add(tournament)
        db.session.commit()

        tournament_id = tournament.id
        first = Principal(subject_id=captains[0].id, role=Role.USER)
        second = Principal(subject_id=captains[1].id, role=Role.USER)
        first_roster = [roster[0].id, roster[1].id]
        second_roster = [roster[2].id, roster[3].id]
        # Release the main thread's connection before the workers start
        db.session.remove()

        service = RegistrationService()
        results = run_concurrently(
            file_app,
            lambda: service.register(first, tournament_id, 'Hawks', first_roster).id,
            lambda: service.register(second, tournament_id, 'Hawks', second_roster).id,
        )

        successes = [r for r in results if isinstance(r, int)]
        failures = [r for r in results if isinstance(r, RegistrationError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], DuplicateTeamName)
        assert Registration.query.filter_by(tournament_id=tournament_id).count() == 1


class TestConcurrentApproval:

    def test_double_approval_counts_once(self, file_app):
        admin_user = _user('admin@example.com', Role.ADMIN)
        captain_user = _user('captain@example.com')
        roster = [_user(f'player{i}@example.com') for i in range(2)]
        tournament = Tournament(
            name='Night Court Classic',
            status=TournamentStatus.UPCOMING.value,
            registration_open=True
        )
        db.session.add(tournament)
        db.session.commit()

        admin = Principal(subject_id=admin_user.id, role=Role.ADMIN)
        captain = Principal(subject_id=captain_user.id, role=Role.USER)
        service = RegistrationService()
        registration = service.register(captain, tournament.id, 'Hawks', [p.id for p in roster])
        registration_id = registration.id
        team_id = registration.team_id
        db.session.remove()

        results = run_concurrently(
            file_app,
            lambda: service.update_status(admin, registration_id, 'APPROVED').status,
            lambda: service.update_status(admin, registration_id, 'APPROVED').status,
        )

        assert results == [TeamStatus.APPROVED.value, TeamStatus.APPROVED.value]
        assert db.session.get(Team, team_id).tournaments_played == 1
