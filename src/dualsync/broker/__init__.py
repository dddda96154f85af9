"""Queue transport used by migrations, synchronisation and retries."""

from dualsync.broker.admin import DeadLetterAdmin, DeadLetterStats
from dualsync.broker.interface import DeadLetterMessage, MessageBroker, MessageHandler
from dualsync.broker.memory import InMemoryBroker
from dualsync.broker.rabbitmq import RabbitMQBroker, RabbitMQBrokerConfig

__all__ = [
    "MessageBroker",
    "MessageHandler",
    "DeadLetterMessage",
    "InMemoryBroker",
    "RabbitMQBroker",
    "RabbitMQBrokerConfig",
    "DeadLetterAdmin",
    "DeadLetterStats",
]
