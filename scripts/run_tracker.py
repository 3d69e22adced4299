"""Run the live trip tracker until interrupted."""

from __future__ import annotations

import argparse
import logging
import time

from triptrack.app import build_tracker
from triptrack.config import load_config
from triptrack.data.models import AppState, PositionSample
from triptrack.location.fix_source import GpsdFixSource, SimulatedFixSource
from triptrack.logging_setup import configure_logging

logger = logging.getLogger("triptrack.runner")

STATUS_INTERVAL_SECONDS = 30


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", default="config/config.yaml", help="Path to config YAML")
    parser.add_argument("--simulate", action="store_true", help="Use a simulated drive instead of gpsd")
    parser.add_argument("--background", action="store_true", help="Start with the app backgrounded")
    parser.add_argument("--watch", metavar="BOOKING_ID", help="Follow a booking as the host instead")
    return parser.parse_args()


def _print_update(trip_id: str, sample: PositionSample) -> None:
    logger.info(
        "Booking %s at (%.6f, %.6f) speed %.1f m/s heading %.0f",
        trip_id,
        sample.latitude,
        sample.longitude,
        sample.speed,
        sample.heading,
    )


def main() -> int:
    args = _parse_args()
    config = load_config(args.config)
    configure_logging(config.log)

    fix_source_factory = SimulatedFixSource if args.simulate else GpsdFixSource
    app_state = AppState.BACKGROUND if args.background else AppState.ACTIVE
    tracker = build_tracker(config, fix_source_factory=fix_source_factory, app_state=app_state)

    if args.watch:
        tracker.channel.connect()
        tracker.supervisor.start()
        tracker.watcher.watch(args.watch, _print_update)
    else:
        tracker.start()

    try:
        while True:
            time.sleep(STATUS_INTERVAL_SECONDS)
            session = tracker.coordinator.session
            logger.info(
                "state=%s booking=%s realtime=%s durable=%s last_sent=%s error=%s",
                tracker.coordinator.state.value,
                session.trip_id,
                session.realtime_active,
                session.durable_active,
                session.last_sample_sent_at,
                session.last_error,
            )
    except KeyboardInterrupt:
        pass
    finally:
        tracker.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
