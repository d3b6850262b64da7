import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from watson_vision.channels import RendezvousChannel
from watson_vision.config import VisionConfig
from watson_vision.lifecycle import Lifecycle
from watson_vision.publisher import (
    PublishLoop,
    TelemetryBus,
    TelemetryBusError,
    TelemetrySession,
    pose_topic,
    stream_url,
    streams_topic,
)


class FakeSession(TelemetrySession):
    def __init__(self, server_time=123_456, hang_on=None):
        self._server_time = server_time
        self.hang_on = hang_on
        self.topics = []
        self.values = []
        self.closed = False

    async def publish_topic(self, name, type_str, properties):
        self.topics.append((name, type_str, properties))
        return name

    async def publish_value(self, publisher, value):
        if self.hang_on is not None and publisher.startswith(self.hang_on):
            await asyncio.sleep(30)
        self.values.append((publisher, value))

    def server_time(self):
        return self._server_time

    async def close(self):
        self.closed = True


class FakeBus(TelemetryBus):
    def __init__(self, failures=0, **session_kwargs):
        self.failures = failures
        self.session_kwargs = session_kwargs
        self.attempts = 0
        self.addresses = []
        self.sessions = []

    async def connect(self, address):
        self.attempts += 1
        self.addresses.append(address)
        if self.failures > 0:
            self.failures -= 1
            raise TelemetryBusError("connection refused")
        session = FakeSession(**self.session_kwargs)
        self.sessions.append(session)
        return session


CONFIG = VisionConfig(camera_name="front", server_ip="10.1.2.2", stream_port=3000)


def _loop(bus, lifecycle, telemetry, **kwargs):
    kwargs.setdefault("recv_poll", 0.02)
    kwargs.setdefault("retry_delay", 0.01)
    return PublishLoop(bus, CONFIG, lifecycle, telemetry, "10.1.2.3", **kwargs)


async def _until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        await asyncio.sleep(0.01)
    return predicate()


def _send_in_background(telemetry, payload):
    """Keep offering ``payload`` until a receiver takes it."""
    sent = threading.Event()

    def sender():
        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            if telemetry.send(payload, 0.05):
                sent.set()
                return

    threading.Thread(target=sender, daemon=True).start()
    return sent


def test_topic_names():
    assert streams_topic("front") == "/CameraPublisher/front/streams"
    assert pose_topic("front") == "/watson/front"
    assert stream_url("10.1.2.3", 3000) == "mjpeg:http://10.1.2.3:3000/test.mjpeg"


def test_announces_stream_and_publishes_samples():
    lifecycle = Lifecycle()
    telemetry = RendezvousChannel()
    bus = FakeBus()
    loop = _loop(bus, lifecycle, telemetry)

    async def scenario():
        task = asyncio.create_task(loop.run())
        _send_in_background(telemetry, b"sample")
        assert await _until(lambda: loop.published >= 1)
        lifecycle.request_stop()
        await asyncio.wait_for(task, 5.0)

    asyncio.run(scenario())

    session = bus.sessions[0]
    assert bus.addresses[0] == "10.1.2.2"
    assert session.topics[0] == (
        "/CameraPublisher/front/streams",
        "string[]",
        {"retained": True, "persistent": False},
    )
    assert session.topics[1] == ("/watson/front", "raw", {"retained": False, "persistent": False})
    assert session.values[0] == (
        "/CameraPublisher/front/streams",
        ["mjpeg:http://10.1.2.3:3000/test.mjpeg"],
    )
    assert ("/watson/front", b"sample") in session.values
    assert session.closed
    assert lifecycle.clock.snapshot().server_time_us == 123_456


def test_slow_publish_restarts_session():
    lifecycle = Lifecycle()
    telemetry = RendezvousChannel()
    bus = FakeBus(hang_on="/watson")
    loop = _loop(bus, lifecycle, telemetry, publish_timeout=0.05)

    async def scenario():
        task = asyncio.create_task(loop.run())
        _send_in_background(telemetry, b"sample")
        assert await _until(lambda: bus.attempts >= 2)
        lifecycle.request_stop()
        await asyncio.wait_for(task, 5.0)

    asyncio.run(scenario())

    assert bus.sessions[0].closed
    assert loop.published == 0
    assert loop.sessions >= 2


def test_connect_failures_are_retried():
    lifecycle = Lifecycle()
    bus = FakeBus(failures=2)
    loop = _loop(bus, lifecycle, RendezvousChannel())

    async def scenario():
        task = asyncio.create_task(loop.run())
        assert await _until(lambda: len(bus.sessions) == 1)
        lifecycle.request_stop()
        await asyncio.wait_for(task, 5.0)

    asyncio.run(scenario())

    assert bus.attempts >= 3
    assert loop.sessions == 1


def test_loop_exits_when_already_stopped():
    lifecycle = Lifecycle()
    lifecycle.request_stop()
    bus = FakeBus()

    asyncio.run(_loop(bus, lifecycle, RendezvousChannel()).run())

    assert bus.attempts == 0


def test_busy_default_executor_does_not_block_telemetry():
    """Samples still flow while blocking preview readers occupy the default executor."""
    lifecycle = Lifecycle()
    telemetry = RendezvousChannel()
    bus = FakeBus()
    loop = _loop(bus, lifecycle, telemetry)
    release = threading.Event()

    async def scenario():
        event_loop = asyncio.get_running_loop()
        event_loop.set_default_executor(ThreadPoolExecutor(max_workers=2))
        readers = [event_loop.run_in_executor(None, release.wait, 5.0) for _ in range(2)]
        task = asyncio.create_task(loop.run())
        _send_in_background(telemetry, b"sample")
        try:
            assert await _until(lambda: loop.published >= 1, timeout=2.0)
        finally:
            release.set()
            lifecycle.request_stop()
            await asyncio.gather(*readers)
            await asyncio.wait_for(task, 5.0)

    asyncio.run(scenario())

    assert ("/watson/front", b"sample") in bus.sessions[0].values
