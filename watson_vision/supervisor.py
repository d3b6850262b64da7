from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .channels import PREVIEW_SEND_TIMEOUT, TELEMETRY_SEND_TIMEOUT, BoundedChannel, RendezvousChannel
from .config import VisionConfig, acquisition_changed
from .encoder import EncodeError, encode_pose_sample, encode_preview_chunk
from .factory import StrategyFactory
from .lifecycle import Lifecycle
from .vision_types import Frame, SessionOutcome

ACQUISITION_RETRY_DELAY = 0.1
FAULT_BACKOFF = 1.0


class FrameSupervisor:
    """
    Runs acquire -> detect -> resolve -> encode -> hand off, one session at a time.

    A session owns the capture device, detector and resolver. Anything that goes
    wrong inside it is returned as a ``fault`` outcome; the device is released and
    the next session is built from freshly loaded configuration.
    """

    def __init__(
        self,
        config_source: Callable[[], VisionConfig],
        lifecycle: Lifecycle,
        preview: BoundedChannel,
        telemetry: RendezvousChannel,
        factory=StrategyFactory.from_config,
        logger: Optional[logging.Logger] = None,
        retry_delay: float = ACQUISITION_RETRY_DELAY,
        fault_backoff: float = FAULT_BACKOFF,
    ):
        self.config_source = config_source
        self.lifecycle = lifecycle
        self.preview = preview
        self.telemetry = telemetry
        self.factory = factory
        self.logger = logger or logging.getLogger(__name__)
        self.retry_delay = retry_delay
        self.fault_backoff = fault_backoff
        self.sessions = 0
        self.consecutive_faults = 0
        self.last_outcome: Optional[SessionOutcome] = None

    def run(self) -> None:
        self.logger.info("frame pipeline started")
        while not self.lifecycle.stopped:
            outcome = self.run_session()
            self.sessions += 1
            self.last_outcome = outcome
            if not outcome.ok:
                # a session that produced frames starts a new fault streak
                self.consecutive_faults = self.consecutive_faults + 1 if outcome.frames == 0 else 1
                self.logger.error(
                    "pipeline session failed after %d frames (%d in a row), restarting",
                    outcome.frames,
                    self.consecutive_faults,
                    exc_info=outcome.fault,
                )
                # first restart is immediate, repeated faults are paced
                if self.consecutive_faults > 1:
                    self.lifecycle.wait(self.fault_backoff)
            else:
                self.consecutive_faults = 0
                self.logger.info(
                    "session ended (%s) frames=%d avg_fps=%.2f sent=%d dropped=%d previews_dropped=%d",
                    outcome.reason,
                    outcome.frames,
                    outcome.avg_fps,
                    outcome.samples_sent,
                    outcome.samples_dropped,
                    outcome.previews_dropped,
                )
        self.logger.info("frame pipeline exited")

    def run_session(self) -> SessionOutcome:
        outcome = SessionOutcome("fault")
        cap = None
        t0 = time.monotonic()

        try:
            config = self.config_source()
            cap, det, loc = self.factory(config)
            cap.start()
            self.logger.info("session started: %s", config.as_dict())
            outcome.reason = self._loop(config, cap, det, loc, outcome)
        except Exception as exc:
            outcome.reason = "fault"
            outcome.fault = exc
        finally:
            if cap is not None:
                try:
                    cap.stop()
                except Exception as exc:
                    self.logger.warning("failed to release capture device: %s", exc)

        outcome.avg_fps = outcome.frames / max(1e-6, time.monotonic() - t0)
        return outcome

    def _loop(self, config: VisionConfig, cap, det, loc, outcome: SessionOutcome) -> str:
        interval = config.reload_interval_s
        next_reload = time.monotonic() + interval

        while True:
            if self.lifecycle.stopped:
                return "stopped"

            if interval > 0 and time.monotonic() >= next_reload:
                next_reload = time.monotonic() + interval
                if self._acquisition_changed(config):
                    self.logger.info("acquisition settings changed, rebuilding session")
                    return "reconfigure"

            frame = cap.read()
            if frame is None:
                outcome.acquisition_errors += 1
                self.lifecycle.wait(self.retry_delay)
                continue

            self.process_frame(frame, det, loc, outcome)

    def _acquisition_changed(self, current: VisionConfig) -> bool:
        try:
            latest = self.config_source()
        except Exception as exc:
            self.logger.warning("config reload failed, keeping current session: %s", exc)
            return False
        return acquisition_changed(current, latest)

    def process_frame(self, frame: Frame, det, loc, outcome: SessionOutcome) -> None:
        observations = det.detect(frame.image)
        observation = loc.resolve(observations)

        if observation is not None:
            try:
                payload = encode_pose_sample(
                    self.lifecycle.clock.sample_time(frame.acquired_at), observation
                )
            except EncodeError as exc:
                self.logger.warning("dropping pose sample: %s", exc)
            else:
                if self.telemetry.send(payload, TELEMETRY_SEND_TIMEOUT):
                    outcome.samples_sent += 1
                else:
                    outcome.samples_dropped += 1
                    self.logger.debug("telemetry consumer busy, sample dropped")

        chunk = encode_preview_chunk(frame.image)
        if chunk is not None and not self.preview.send(chunk, PREVIEW_SEND_TIMEOUT):
            outcome.previews_dropped += 1

        outcome.frames += 1
