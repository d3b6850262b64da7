from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from .channels import RendezvousChannel
from .config import VisionConfig
from .lifecycle import Lifecycle

PUBLISH_TIMEOUT = 1.0
RETRY_DELAY = 0.5
RECV_POLL = 0.25


class TelemetryBusError(RuntimeError):
    pass


class TelemetrySession(ABC):
    @abstractmethod
    async def publish_topic(self, name: str, type_str: str, properties: dict[str, Any]) -> Any: ...

    @abstractmethod
    async def publish_value(self, publisher: Any, value: Any) -> None: ...

    @abstractmethod
    def server_time(self) -> int: ...

    @abstractmethod
    async def close(self) -> None: ...


class TelemetryBus(ABC):
    @abstractmethod
    async def connect(self, address: str) -> TelemetrySession: ...


def streams_topic(camera_name: str) -> str:
    return f"/CameraPublisher/{camera_name}/streams"


def pose_topic(camera_name: str) -> str:
    return f"/watson/{camera_name}"


def stream_url(host: str, port: int) -> str:
    return f"mjpeg:http://{host}:{port}/test.mjpeg"


class PublishLoop:
    """
    Keeps a telemetry-bus session alive and publishes every pose sample it is
    handed. Any connect, topic or publish failure (including a publish slower
    than ``publish_timeout``) drops the session; a new one is attempted after
    ``retry_delay``.
    """

    def __init__(
        self,
        bus: TelemetryBus,
        config: VisionConfig,
        lifecycle: Lifecycle,
        telemetry: RendezvousChannel,
        stream_host: str,
        logger: Optional[logging.Logger] = None,
        publish_timeout: float = PUBLISH_TIMEOUT,
        retry_delay: float = RETRY_DELAY,
        recv_poll: float = RECV_POLL,
    ):
        self.bus = bus
        self.config = config
        self.lifecycle = lifecycle
        self.telemetry = telemetry
        self.stream_host = stream_host
        self.logger = logger or logging.getLogger(__name__)
        self.publish_timeout = publish_timeout
        self.retry_delay = retry_delay
        self.recv_poll = recv_poll
        self.sessions = 0
        self.published = 0
        # own worker, separate from the default executor the preview clients use
        self._recv_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="telemetry-recv"
        )

    async def run(self) -> None:
        try:
            while not self.lifecycle.stopped:
                try:
                    await self.run_session()
                except asyncio.TimeoutError:
                    self.logger.error("telemetry publish took too long, restarting session")
                except Exception:
                    self.logger.exception("telemetry bus session failed")
                if self.lifecycle.stopped:
                    break
                await asyncio.sleep(self.retry_delay)
        finally:
            self._recv_executor.shutdown(wait=False)
        self.logger.info("publish loop exited")

    async def run_session(self) -> None:
        address = self.config.server_ip
        session = await self.bus.connect(address)
        self.sessions += 1
        self.logger.info("connected to telemetry bus at %s", address)
        try:
            streams = await session.publish_topic(
                streams_topic(self.config.camera_name),
                "string[]",
                {"retained": True, "persistent": False},
            )
            await asyncio.wait_for(
                session.publish_value(
                    streams, [stream_url(self.stream_host, self.config.stream_port)]
                ),
                self.publish_timeout,
            )
            poses = await session.publish_topic(
                pose_topic(self.config.camera_name),
                "raw",
                {"retained": False, "persistent": False},
            )

            loop = asyncio.get_running_loop()
            while not self.lifecycle.stopped:
                self.lifecycle.clock.update(session.server_time(), time.monotonic())
                sample = await loop.run_in_executor(
                    self._recv_executor, self.telemetry.recv, self.recv_poll
                )
                if sample is None:
                    continue
                await asyncio.wait_for(session.publish_value(poses, sample), self.publish_timeout)
                self.published += 1
        finally:
            try:
                await session.close()
            except Exception as exc:
                self.logger.warning("error closing telemetry session: %s", exc)
