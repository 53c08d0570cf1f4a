import json
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_STATUS_CHANGED = "tournament.status_changed"

    # Registration lifecycle
    REGISTRATION_CREATED = "registration.created"
    REGISTRATION_STATUS_CHANGED = "registration.status_changed"
    REGISTRATION_ROSTER_CHANGED = "registration.roster_changed"
    REGISTRATION_RENAMED = "registration.renamed"
    REGISTRATION_WITHDRAWN = "registration.withdrawn"


def _utc_timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


@dataclass(frozen=True)
class Event:
    """A committed change, as published to subscribers.

    ``event_id`` lets consumers drop duplicates when a publish is retried.
    """
    type: EventType
    tournament_id: int
    data: dict = field(default_factory=dict)
    occurred_at: str = field(default_factory=_utc_timestamp)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def channel(self) -> str:
        return f"tournament:{self.tournament_id}:events"

    def to_dict(self) -> dict:
        return {
            "id": self.event_id,
            "type": self.type.value,
            "tournament_id": self.tournament_id,
            "occurred_at": self.occurred_at,
            "data": dict(self.data),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, payload: dict) -> "Event":
        """Rebuild an event; raises ValueError for unknown types or missing fields."""
        try:
            return cls(
                type=EventType(payload["type"]),
                tournament_id=int(payload["tournament_id"]),
                data=dict(payload.get("data") or {}),
                occurred_at=payload["occurred_at"],
                event_id=payload["id"],
            )
        except KeyError as e:
            raise ValueError(f"Event payload missing field {e}")

    @classmethod
    def from_json(cls, raw: str) -> "Event":
        return cls.from_dict(json.loads(raw))


def tournament_created_event(tournament_id: int, name: str) -> Event:
    return Event(EventType.TOURNAMENT_CREATED, tournament_id, {"name": name})


def tournament_status_event(tournament_id: int, from_state: str, to_state: str) -> Event:
    return Event(
        EventType.TOURNAMENT_STATUS_CHANGED,
        tournament_id,
        {"from_state": from_state, "to_state": to_state},
    )


def registration_created_event(tournament_id: int, registration_id: int, team_name: str) -> Event:
    return Event(
        EventType.REGISTRATION_CREATED,
        tournament_id,
        {"registration_id": registration_id, "team_name": team_name},
    )


def registration_status_event(tournament_id: int, registration_id: int, from_state: str, to_state: str) -> Event:
    return Event(
        EventType.REGISTRATION_STATUS_CHANGED,
        tournament_id,
        {"registration_id": registration_id, "from_state": from_state, "to_state": to_state},
    )


def roster_changed_event(tournament_id: int, registration_id: int, player_ids) -> Event:
    return Event(
        EventType.REGISTRATION_ROSTER_CHANGED,
        tournament_id,
        {"registration_id": registration_id, "player_ids": list(player_ids)},
    )


def registration_withdrawn_event(tournament_id: int, registration_id: int) -> Event:
    return Event(EventType.REGISTRATION_WITHDRAWN, tournament_id, {"registration_id": registration_id})


def registration_renamed_event(tournament_id: int, registration_id: int, old_name: str, new_name: str) -> Event:
    return Event(
        EventType.REGISTRATION_RENAMED,
        tournament_id,
        {"registration_id": registration_id, "from_name": old_name, "to_name": new_name},
    )
