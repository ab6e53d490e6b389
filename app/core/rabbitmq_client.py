# app/core/rabbitmq_client.py

import json
from typing import Optional

import aio_pika

from app.log.logging import logger


class AsyncRabbitMQClient:
    """
    An asynchronous RabbitMQ publishing client using aio_pika.
    """

    def __init__(self, rabbitmq_url: str) -> None:
        self.rabbitmq_url = rabbitmq_url
        self.connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self.channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._declared: set[str] = set()

    async def connect(self) -> None:
        """Establishes a connection to RabbitMQ."""
        if self.connection and not self.connection.is_closed:
            return
        try:
            self.connection = await aio_pika.connect_robust(self.rabbitmq_url)
            self.channel = await self.connection.channel()
            self._declared.clear()
            logger.info(
                "RabbitMQ connection established",
                event_type="rabbitmq_connection_established"
            )
        except Exception as e:
            logger.error(
                "Failed to connect to RabbitMQ: {error}",
                error=str(e),
                event_type="rabbitmq_connection_failed"
            )
            raise

    async def ensure_queue(self, queue_name: str, durable: bool = True) -> None:
        """Declares a queue once per connection."""
        await self.connect()
        if queue_name in self._declared:
            return
        try:
            await self.channel.declare_queue(queue_name, durable=durable)
            self._declared.add(queue_name)
            logger.info(
                "Queue {queue_name} ensured (durability={durable})",
                queue_name=queue_name,
                durable=durable,
                event_type="queue_ensured"
            )
        except Exception as e:
            logger.error(
                "Failed to ensure queue {queue_name}: {error}",
                queue_name=queue_name,
                error=str(e),
                event_type="queue_ensure_failed",
                error_type=type(e).__name__
            )
            raise

    async def publish_message(
        self,
        queue_name: str,
        message: dict,
        persistent: bool = False,
        message_id: Optional[str] = None,
    ) -> None:
        """
        Publishes a JSON message to the queue.

        ``message_id`` is set as the AMQP message id so consumers can drop
        redelivered duplicates.
        """
        try:
            await self.connect()
            await self.ensure_queue(queue_name)
            message_body = json.dumps(message, default=str).encode()
            await self.channel.default_exchange.publish(
                aio_pika.Message(
                    body=message_body,
                    content_type="application/json",
                    message_id=message_id,
                    delivery_mode=(
                        aio_pika.DeliveryMode.PERSISTENT
                        if persistent
                        else aio_pika.DeliveryMode.NOT_PERSISTENT
                    ),
                ),
                routing_key=queue_name,
            )
            logger.debug(
                "Message published to queue {queue_name}",
                queue_name=queue_name,
                message_id=message_id,
                event_type="message_published"
            )
        except Exception as e:
            logger.error(
                "Failed to publish message to queue {queue_name}: {error}",
                queue_name=queue_name,
                error=str(e),
                event_type="message_publish_failed"
            )
            raise

    async def close(self) -> None:
        """Closes the RabbitMQ connection."""
        if self.connection and not self.connection.is_closed:
            try:
                await self.connection.close()
                logger.info(
                    "RabbitMQ connection closed",
                    event_type="rabbitmq_connection_closed"
                )
            except Exception as e:
                logger.error(
                    "Error while closing RabbitMQ connection: {error}",
                    error=str(e),
                    event_type="rabbitmq_connection_close_error",
                    error_type=type(e).__name__
                )
