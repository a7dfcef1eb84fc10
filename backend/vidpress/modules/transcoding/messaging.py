"""Reply publication to the caller's callback queue."""

import logging
from typing import Optional

from celery import Celery
from kombu import Exchange
from kombu.exceptions import KombuError

from vidpress.core.celery_app import celery_app, video_exchange
from vidpress.core.logging import log_error, log_info

logger = logging.getLogger(__name__)


class CallbackPublisher:
    """Publishes job responses on the shared exchange.

    The callback queue name is used as the routing key. Delivery is
    attempted once; the broker connection comes from the Celery pool.
    """

    def __init__(self, app: Optional[Celery] = None, exchange: Optional[Exchange] = None):
        self.app = app or celery_app
        self.exchange = exchange or video_exchange

    def publish(self, callback_queue: str, body: dict) -> bool:
        """Publish a response.

        Args:
            callback_queue: Routing key chosen by the requester
            body: JSON-serializable response

        Returns:
            True if the message was handed to the broker
        """
        try:
            with self.app.producer_or_acquire() as producer:
                producer.publish(
                    body,
                    exchange=self.exchange,
                    routing_key=callback_queue,
                    serializer="json",
                    declare=[self.exchange],
                    retry=False,
                )
        except (KombuError, OSError) as e:
            log_error(
                logger,
                "Failed to publish job response",
                exception=e,
                callback_queue=callback_queue,
                video_id=body.get("videoId"),
            )
            return False

        log_info(
            logger,
            "Job response published",
            callback_queue=callback_queue,
            video_id=body.get("videoId"),
            success=body.get("success"),
        )
        return True
