from enum import Enum
from typing import Optional, Callable, List, Iterable
from dataclasses import dataclass

from .errors import (
    InvalidStateTransition,
    InvalidTeamName,
    InsufficientPlayers,
    RegistrationClosed,
    TournamentFull,
)


class TournamentStatus(str, Enum):
    UPCOMING = "UPCOMING"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TeamStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str
    guard: Optional[Callable] = None


def tournament_completed_guard(context: dict) -> bool:
    return context.get("tournament_status") == TournamentStatus.COMPLETED


class StateMachine:
    """
    Table-driven state machine. Subclasses declare TRANSITIONS and the enum
    of states; moving between states only happens along a declared edge.
    """
    STATES = None
    TRANSITIONS: List[Transition] = []
    TERMINAL = ()

    def __init__(self, initial_state):
        self._state = self.STATES(initial_state)
        self._history: List[tuple] = []

    @property
    def state(self):
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in self.TERMINAL

    @property
    def allowed_actions(self) -> List[str]:
        return [t.action for t in self.TRANSITIONS if t.from_state == self._state]

    @property
    def allowed_targets(self) -> List:
        return [t.to_state for t in self.TRANSITIONS if t.from_state == self._state]

    def can_transition(self, action: str) -> bool:
        return action in self.allowed_actions

    def can_transition_to(self, target) -> bool:
        return self.STATES(target) in self.allowed_targets

    def _apply(self, t: Transition, guard_context: dict = None):
        if t.guard and not t.guard(guard_context or {}):
            raise InvalidStateTransition(
                self._state.value,
                t.to_state.value,
                f"Guard condition failed for '{t.action}' from {self._state.value}"
            )
        old_state = self._state
        self._state = t.to_state
        self._history.append((old_state, t.action, self._state))
        return self._state

    def transition(self, action: str, guard_context: dict = None):
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return self._apply(t, guard_context)

        raise InvalidStateTransition(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    def transition_to(self, target, guard_context: dict = None):
        try:
            target = self.STATES(target)
        except ValueError:
            raise InvalidStateTransition(self._state.value, str(target), f"Unknown status '{target}'")

        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.to_state == target:
                return self._apply(t, guard_context)

        raise InvalidStateTransition(self._state.value, target.value)

    def get_history(self) -> List[tuple]:
        return self._history.copy()


class TournamentStateMachine(StateMachine):
    STATES = TournamentStatus
    TRANSITIONS = [
        Transition(TournamentStatus.UPCOMING, TournamentStatus.ONGOING, "start"),
        Transition(TournamentStatus.ONGOING, TournamentStatus.COMPLETED, "complete"),
        Transition(TournamentStatus.UPCOMING, TournamentStatus.CANCELLED, "cancel"),
        Transition(TournamentStatus.ONGOING, TournamentStatus.CANCELLED, "cancel"),
    ]
    TERMINAL = (TournamentStatus.COMPLETED, TournamentStatus.CANCELLED)

    def __init__(self, initial_state=TournamentStatus.UPCOMING):
        super().__init__(initial_state)

    @property
    def accepts_registrations(self) -> bool:
        return self._state == TournamentStatus.UPCOMING


class TeamStatusMachine(StateMachine):
    STATES = TeamStatus
    TRANSITIONS = [
        Transition(TeamStatus.PENDING, TeamStatus.APPROVED, "approve"),
        Transition(TeamStatus.PENDING, TeamStatus.REJECTED, "reject"),
        Transition(TeamStatus.APPROVED, TeamStatus.COMPLETED, "complete", tournament_completed_guard),
    ]
    TERMINAL = (TeamStatus.REJECTED, TeamStatus.COMPLETED)

    def __init__(self, initial_state=TeamStatus.PENDING):
        super().__init__(initial_state)


@dataclass(frozen=True)
class RegistrationRules:
    min_team_name_length: int = 3
    max_team_name_length: int = 100
    min_players: int = 3
    enforce_max_teams: bool = True

    @classmethod
    def from_config(cls, config) -> "RegistrationRules":
        return cls(
            min_team_name_length=int(config.get('MIN_TEAM_NAME_LENGTH', 3)),
            max_team_name_length=int(config.get('MAX_TEAM_NAME_LENGTH', 100)),
            min_players=int(config.get('MIN_PLAYERS', 3)),
            enforce_max_teams=bool(config.get('ENFORCE_MAX_TEAMS', True)),
        )


def check_registration_open(status, registration_open: bool):
    if TournamentStatus(status) != TournamentStatus.UPCOMING or not registration_open:
        raise RegistrationClosed("Registration is closed for this tournament")


def check_capacity(max_teams: Optional[int], active_count: int, rules: RegistrationRules):
    if rules.enforce_max_teams and max_teams is not None and active_count >= max_teams:
        raise TournamentFull(f"Tournament is full ({max_teams} teams)")


def validate_team_name(team_name: str, rules: RegistrationRules) -> str:
    name = team_name.strip() if isinstance(team_name, str) else ""
    if len(name) < rules.min_team_name_length:
        raise InvalidTeamName(
            f"Team name must be at least {rules.min_team_name_length} characters"
        )
    if len(name) > rules.max_team_name_length:
        raise InvalidTeamName(
            f"Team name must be at most {rules.max_team_name_length} characters"
        )
    return name


def normalize_players(captain_id: int, player_ids: Iterable[int], rules: RegistrationRules) -> List[int]:
    """Dedupe the roster keeping order, putting the captain first."""
    roster = [captain_id]
    for pid in player_ids or []:
        if pid not in roster:
            roster.append(pid)

    if len(roster) < rules.min_players:
        raise InsufficientPlayers(
            f"A team needs at least {rules.min_players} players including the captain"
        )
    return roster
