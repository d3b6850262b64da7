import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from aiohttp import web

from .channels import BoundedChannel, RendezvousChannel
from .config import ConfigError, VisionConfig, load_config
from .lifecycle import Lifecycle
from .logging_utils import add_file_handler, setup_logger
from .publisher import PublishLoop, TelemetryBus
from .server import build_app
from .supervisor import FrameSupervisor

SHUTDOWN_GRACE = 1.5
STOP_POLL = 0.2

logger = logging.getLogger("watson_vision.run")


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Fiducial pose coprocessor")
    ap.add_argument("--config", required=True, help="Path to JSON/YAML config")

    ap.add_argument("--camera-name")
    ap.add_argument("--capture", choices=["auto", "gstreamer", "v4l2", "static"])
    ap.add_argument("--video-path")
    ap.add_argument("--static-image")
    ap.add_argument("--width", type=int)
    ap.add_argument("--height", type=int)
    ap.add_argument("--server-ip")
    ap.add_argument("--stream-host")
    ap.add_argument("--stream-port", type=int)
    ap.add_argument("--log-level")
    ap.add_argument("--log-file")

    return ap


def _apply_args(cfg: VisionConfig, args: argparse.Namespace) -> VisionConfig:
    cfg.apply_overrides(
        camera_name=args.camera_name,
        capture=args.capture,
        video_path=args.video_path,
        static_image=args.static_image,
        width=args.width,
        height=args.height,
        server_ip=args.server_ip,
        stream_host=args.stream_host,
        stream_port=args.stream_port,
        log_level=args.log_level.upper() if args.log_level else None,
    )
    return cfg


async def serve(
    config: VisionConfig,
    lifecycle: Lifecycle,
    preview: BoundedChannel,
    telemetry: RendezvousChannel,
    bus: Optional[TelemetryBus] = None,
) -> None:
    """Run the preview server and publish loop until the stop signal is set."""
    if bus is None:
        from .nt_client import NtTelemetryBus

        bus = NtTelemetryBus(f"watson-{config.camera_name}", port=config.server_port)

    stream_host = config.stream_host
    if not stream_host:
        from .nt_client import local_address_for

        stream_host = local_address_for(config.server_ip)

    runner = web.AppRunner(build_app(preview, lifecycle))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", config.stream_port)
    await site.start()
    logger.info("preview stream on http://%s:%d/test.mjpeg", stream_host, config.stream_port)

    publish_loop = PublishLoop(bus, config, lifecycle, telemetry, stream_host)
    publish_task = asyncio.create_task(publish_loop.run())

    try:
        while not lifecycle.stopped and not publish_task.done():
            await asyncio.sleep(STOP_POLL)
    finally:
        lifecycle.request_stop()
        await runner.cleanup()
        done, _pending = await asyncio.wait({publish_task}, timeout=SHUTDOWN_GRACE)
        if not done:
            publish_task.cancel()


def main() -> int:
    ap = _build_parser()
    args = ap.parse_args()

    try:
        cfg = _apply_args(load_config(args.config), args)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    log = setup_logger(cfg.camera_name, cfg.log_level)
    if args.log_file:
        add_file_handler(log, cfg.camera_name, args.log_file)

    lifecycle = Lifecycle()
    preview: BoundedChannel = BoundedChannel()
    telemetry: RendezvousChannel = RendezvousChannel()

    supervisor = FrameSupervisor(
        lambda: _apply_args(load_config(args.config), args),
        lifecycle,
        preview,
        telemetry,
    )

    def _handle_signal(_sig, _frame):
        lifecycle.request_stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    lifecycle.start_supervisor(supervisor)
    try:
        asyncio.run(serve(cfg, lifecycle, preview, telemetry))
    finally:
        lifecycle.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
