import os
import logging
import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"


class EventPublisher:
    """
    Publishes committed domain events to Redis channels.

    Publishing is fire-and-forget: a Redis failure is logged and never
    propagated, because the change it describes is already committed.
    """

    def __init__(self, redis_client: redis.Redis = None):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str = None) -> "EventPublisher":
        redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    def publish(self, channel: str, event: Event) -> bool:
        if not self.enabled:
            return False
        try:
            self.redis.publish(channel, event.to_json())
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to publish {event.type.value} on {channel}: {e}")
            return False

    def publish_tournament_event(self, event: Event) -> bool:
        delivered = self.publish(event.channel, event)
        self.publish(GLOBAL_CHANNEL, event)
        return delivered
