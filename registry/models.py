from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash

from shared.policy import Role, RegistrationSnapshot
from shared.state_machine import TournamentStatus, TeamStatus

db = SQLAlchemy()


team_players = db.Table(
    'team_players',
    db.Column('team_id', db.Integer, db.ForeignKey('teams.id'), primary_key=True),
    db.Column('user_id', db.Integer, db.ForeignKey('users.id'), primary_key=True),
)


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)  # stored lower-cased
    name = db.Column(db.String(100), nullable=True)
    password_hash = db.Column(db.String(256), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=Role.USER.value)
    email_verified = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @staticmethod
    def normalize_email(email: str) -> str:
        return (email or '').strip().lower()

    @property
    def role_enum(self) -> Role:
        return Role.parse(self.role)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'email_verified': self.email_verified,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date, nullable=True)
    location = db.Column(db.String(200), nullable=True)
    level = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=TournamentStatus.UPCOMING.value)
    registration_open = db.Column(db.Boolean, nullable=False, default=True)
    max_teams = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    teams = db.relationship('TournamentTeam', back_populates='tournament')
    registrations = db.relationship('Registration', back_populates='tournament')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'date': self.date.isoformat() if self.date else None,
            'location': self.location,
            'level': self.level,
            'description': self.description,
            'status': self.status,
            'registration_open': self.registration_open,
            'max_teams': self.max_teams,
            'team_count': len([t for t in self.teams if t.status != TeamStatus.REJECTED.value]),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Team(db.Model):
    __tablename__ = 'teams'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    tournaments_played = db.Column(db.Integer, nullable=False, default=0)
    tournaments_won = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    players = db.relationship('User', secondary=team_players, backref='teams')
    tournaments = db.relationship('TournamentTeam', back_populates='team')

    @property
    def player_ids(self):
        return sorted(p.id for p in self.players)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'player_ids': self.player_ids,
            'tournaments_played': self.tournaments_played,
            'tournaments_won': self.tournaments_won,
        }


class TournamentTeam(db.Model):
    __tablename__ = 'tournament_teams'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TeamStatus.PENDING.value)
    position = db.Column(db.Integer, nullable=True)  # Final placing, set on completion
    registered_at = db.Column(db.DateTime, default=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='teams')
    team = db.relationship('Team', back_populates='tournaments')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'team_id', name='uq_tournament_team'),
    )


class Registration(db.Model):
    __tablename__ = 'registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    team_name = db.Column(db.String(100), nullable=False)
    captain_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False)
    tournament_team_id = db.Column(db.Integer, db.ForeignKey('tournament_teams.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    withdrawn_at = db.Column(db.DateTime, nullable=True)

    tournament = db.relationship('Tournament', back_populates='registrations')
    captain = db.relationship('User')
    team = db.relationship('Team')
    tournament_team = db.relationship('TournamentTeam')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'team_name', name='uq_registration_team_name'),
    )

    @property
    def status(self) -> str:
        return self.tournament_team.status

    @property
    def player_ids(self):
        # Captain first, then the rest of the roster
        others = [pid for pid in self.team.player_ids if pid != self.captain_id]
        return [self.captain_id] + others

    def snapshot(self) -> RegistrationSnapshot:
        return RegistrationSnapshot(
            registration_id=self.id,
            tournament_id=self.tournament_id,
            captain_id=self.captain_id,
            status=self.status,
            player_ids=tuple(self.player_ids),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'team_id': self.team_id,
            'team_name': self.team_name,
            'captain_id': self.captain_id,
            'player_ids': self.player_ids,
            'status': self.status,
            'position': self.tournament_team.position,
            'registered_at': self.tournament_team.registered_at.isoformat()
            if self.tournament_team.registered_at else None,
            'withdrawn_at': self.withdrawn_at.isoformat() if self.withdrawn_at else None,
        }
