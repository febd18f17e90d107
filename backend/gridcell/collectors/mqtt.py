"""MQTT subscription feeding bus payloads to the aggregation engine."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import aiomqtt

from gridcell.config import Settings

logger = logging.getLogger(__name__)

PayloadHandler = Callable[[bytes | str], Awaitable[None]]


class MqttSubscription:
    """One topic on the broker, with reconnection."""

    def __init__(self, name: str, topic: str, handler: PayloadHandler, settings: Settings):
        self.name = name
        self.topic = topic
        self._handler = handler
        self._settings = settings
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the subscription loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._subscribe_loop())
        logger.info(f"Started MQTT subscription {self.name} on {self.topic}")

    async def stop(self) -> None:
        """Stop the subscription loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"Stopped MQTT subscription {self.name}")

    def _client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            hostname=self._settings.mqtt_host.strip(),
            port=self._settings.mqtt_port,
            username=self._settings.mqtt_username,
            password=self._settings.mqtt_password,
        )

    async def _subscribe_loop(self) -> None:
        """Main MQTT subscription loop with reconnection."""
        while self._running:
            try:
                async with self._client() as client:
                    await client.subscribe(self.topic, qos=1)
                    logger.info(f"Subscribed to {self.topic} on {self._settings.mqtt_host}")

                    async for message in client.messages:
                        if not self._running:
                            break
                        await self._handler(message.payload)

            except aiomqtt.MqttError as e:
                logger.error(f"MQTT error for {self.name} ({self._settings.mqtt_host}): {e}")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Unexpected error in MQTT loop for {self.name}: {e}")

            if self._running:
                delay = self._settings.mqtt_reconnect_seconds
                logger.info(f"Reconnecting {self.name} in {delay} seconds...")
                await asyncio.sleep(delay)
