import asyncio
import json
import sys
import threading
from unittest.mock import patch

from watson_vision import run
from watson_vision.channels import BoundedChannel, RendezvousChannel
from watson_vision.config import VisionConfig
from watson_vision.lifecycle import Lifecycle
from watson_vision.publisher import TelemetryBus, TelemetryBusError


class RefusingBus(TelemetryBus):
    def __init__(self):
        self.attempts = 0

    async def connect(self, address):
        self.attempts += 1
        raise TelemetryBusError("no server")


def test_args_override_config():
    args = run._build_parser().parse_args(
        ["--config", "cfg.json", "--camera-name", "left", "--stream-port", "3100", "--log-level", "debug"]
    )
    cfg = run._apply_args(VisionConfig(), args)

    assert cfg.camera_name == "left"
    assert cfg.stream_port == 3100
    assert cfg.log_level == "DEBUG"
    assert cfg.width == 1280


def test_main_reports_bad_config(tmp_path, capsys):
    with patch.object(sys, "argv", ["watson-vision", "--config", str(tmp_path / "missing.json")]):
        assert run.main() == 2
    assert "error:" in capsys.readouterr().err


def test_main_rejects_invalid_config(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"capture": "firewire"}), encoding="utf-8")
    with patch.object(sys, "argv", ["watson-vision", "--config", str(path)]):
        assert run.main() == 2


def test_serve_runs_until_stop():
    cfg = VisionConfig(stream_host="127.0.0.1", stream_port=0)
    lifecycle = Lifecycle()
    bus = RefusingBus()

    threading.Timer(0.3, lifecycle.request_stop).start()
    asyncio.run(
        asyncio.wait_for(
            run.serve(cfg, lifecycle, BoundedChannel(), RendezvousChannel(), bus=bus),
            10.0,
        )
    )

    assert lifecycle.stopped
    assert bus.attempts >= 1
