"""NetworkTables 4 implementation of the telemetry bus, via pyntcore."""

from __future__ import annotations

import asyncio
import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import ntcore

from .publisher import TelemetryBus, TelemetryBusError, TelemetrySession

NT4_PORT = 5810
CONNECT_TIMEOUT = 3.0
CONNECT_POLL = 0.05

logger = logging.getLogger(__name__)


class NtSession(TelemetrySession):
    def __init__(self, inst: "ntcore.NetworkTableInstance"):
        self._inst = inst
        self._topics: list[Any] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="nt-publish")

    async def publish_topic(self, name: str, type_str: str, properties: dict[str, Any]) -> Any:
        if type_str == "string[]":
            topic = self._inst.getStringArrayTopic(name)
            publisher = topic.publish()
        elif type_str == "raw":
            topic = self._inst.getRawTopic(name)
            publisher = topic.publish("raw")
        else:
            raise TelemetryBusError(f"Unsupported topic type: {type_str}")

        topic.setRetained(bool(properties.get("retained", False)))
        topic.setPersistent(bool(properties.get("persistent", False)))
        self._topics.append(publisher)
        return publisher

    async def publish_value(self, publisher: Any, value: Any) -> None:
        if not self._inst.isConnected():
            raise TelemetryBusError("Server unexpectedly closed")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._set_and_flush, publisher, value)

    def _set_and_flush(self, publisher: Any, value: Any) -> None:
        publisher.set(value)
        self._inst.flush()

    def server_time(self) -> int:
        offset = self._inst.getServerTimeOffset()
        if offset is None:
            raise TelemetryBusError("Server time offset not known yet")
        return ntcore._now() + offset

    async def close(self) -> None:
        try:
            for publisher in self._topics:
                publisher.close()
            self._topics.clear()
            self._inst.stopClient()
            ntcore.NetworkTableInstance.destroy(self._inst)
        finally:
            self._executor.shutdown(wait=False)


class NtTelemetryBus(TelemetryBus):
    def __init__(
        self,
        identity: str,
        port: int = NT4_PORT,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self.identity = identity
        self.port = port
        self.connect_timeout = connect_timeout

    async def connect(self, address: str) -> NtSession:
        inst = ntcore.NetworkTableInstance.create()
        inst.startClient4(self.identity)
        inst.setServer(address, self.port)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.connect_timeout
        while not inst.isConnected() or inst.getServerTimeOffset() is None:
            if loop.time() >= deadline:
                inst.stopClient()
                ntcore.NetworkTableInstance.destroy(inst)
                raise TelemetryBusError(f"Timed out connecting to {address}:{self.port}")
            await asyncio.sleep(CONNECT_POLL)
        return NtSession(inst)


def local_address_for(server_ip: str) -> str:
    """Address of the interface that routes to ``server_ip``."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect((server_ip, NT4_PORT))
            return sock.getsockname()[0]
        except OSError as exc:
            logger.warning("could not determine local address towards %s: %s", server_ip, exc)
            return socket.gethostname()
