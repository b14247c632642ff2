"""Queue broker — protocol, Redis implementation, and connection context."""

from dispatcher.broker.connection import BrokerContext
from dispatcher.broker.events import CompletionListener
from dispatcher.broker.protocol import JobHandle, JobQueue
from dispatcher.broker.redis_queue import RedisJobQueue

__all__ = [
    "BrokerContext",
    "CompletionListener",
    "JobHandle",
    "JobQueue",
    "RedisJobQueue",
]
