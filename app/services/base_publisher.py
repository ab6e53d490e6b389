"""
Base class of the service's queue producers.

A producer is bound to one durable queue. The RabbitMQ connection is opened
on first use and kept for the life of the process.
"""
from abc import ABC, abstractmethod

from app.core.config import Settings
from app.core.rabbitmq_client import AsyncRabbitMQClient


class BasePublisher(ABC):
    def __init__(self, config: Settings):
        self.settings = config
        self.rabbitmq_client = AsyncRabbitMQClient(config.rabbitmq_url)
        self.queue_name = self.get_queue_name()

    @abstractmethod
    def get_queue_name(self) -> str:
        """Queue this producer writes to."""

    async def publish(self, message: dict, persistent: bool = False, message_id: str | None = None) -> None:
        await self.rabbitmq_client.publish_message(
            self.queue_name, message, persistent, message_id=message_id
        )

    async def check_connection(self) -> None:
        """Connect and declare the queue. Raises when the broker is unreachable."""
        await self.rabbitmq_client.ensure_queue(self.queue_name)

    async def close(self) -> None:
        await self.rabbitmq_client.close()
