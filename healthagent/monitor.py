import argparse
import json
import logging
import sys
import threading
from datetime import datetime, timedelta, timezone

from . import config
from .api import ApiClient
from .checks import get_checks
from .errors import TransmissionError
from .gate import should_transmit
from .snapshot import build_snapshot, get_machine_id

# monitor.py - Scheduling loop for the health agent

logger = logging.getLogger(__name__)


class SystemMonitor:
    """
    Runs probe-and-maybe-transmit cycles on a fixed interval.

    ``last_state`` holds the last snapshot the server accepted and is only
    replaced by a cycle that transmitted successfully. Cycles never
    overlap: a cycle requested while another is running returns "busy".
    """

    def __init__(self, api_client, checks=None, machine_id=None,
                 check_interval=config.POLL_INTERVAL_MINUTES,
                 heartbeat=timedelta(hours=config.HEARTBEAT_HOURS),
                 snapshot_builder=build_snapshot):
        self.api = api_client
        self.checks = checks or get_checks()
        self.machine_id = machine_id
        self.check_interval = check_interval
        self.heartbeat = heartbeat
        self.snapshot_builder = snapshot_builder
        self.last_state = None
        self.last_check = None
        self.next_check = None
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    def run_check(self) -> str:
        """
        Performs one cycle. Returns "sent", "skipped", "failed" or "busy".
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("A system check is already in progress, skipping")
            return "busy"
        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _run_cycle(self) -> str:
        if not self.machine_id:
            self.machine_id = get_machine_id()

        logger.info("Running system check...")
        self.last_check = datetime.now(timezone.utc)
        self.next_check = self.last_check + timedelta(minutes=self.check_interval)
        current = self.snapshot_builder(self.checks, self.machine_id)

        if not should_transmit(self.last_state, current, heartbeat=self.heartbeat):
            logger.info("No changes detected, skipping update")
            return "skipped"

        try:
            self.api.send_system_data(current)
        except TransmissionError as e:
            # last_state is left alone so the next cycle resends
            logger.error("Error sending snapshot to API: %s", e)
            return "failed"

        self.last_state = current
        logger.info("System state sent to server")
        return "sent"

    def run_forever(self):
        logger.info("System monitor started for machine %s. Polling every %s minutes.",
                    self.machine_id or "(pending)", self.check_interval)
        # The initial check always runs, later ones until stop() is called
        while True:
            try:
                self.run_check()
            except Exception:
                logger.exception("An unexpected error occurred during the system check")
            if self._stop_event.wait(self.check_interval * 60):
                break
        logger.info("System monitor stopped")

    def start(self):
        if self.is_running():
            logger.info("Monitor is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="healthagent-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout=None):
        """
        Stops scheduling further cycles. An in-flight cycle is allowed to finish.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def update_settings(self, api_url=None, api_token=None, check_interval=None):
        self.api.update_config(api_url or self.api.api_url, api_token or self.api.api_token)
        if check_interval is not None:
            self.check_interval = check_interval
        if self.is_running():
            self.stop()
            self.start()


def main(argv=None):
    parser = argparse.ArgumentParser(description="healthagent - Host health monitoring and reporting daemon.")
    parser.add_argument("--once", action="store_true", help="Collect and print a snapshot once without sending it.")
    parser.add_argument("--run-now", action="store_true", help="Run a single check cycle, sending if needed, then exit.")
    parser.add_argument("--interval", type=int, default=config.POLL_INTERVAL_MINUTES, help="Minutes between checks.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    checks = get_checks()
    if args.once:
        snapshot = build_snapshot(checks, get_machine_id())
        print(json.dumps(snapshot, indent=2))
        return 0

    problems = config.validate_config(config.API_URL, config.API_TOKEN, args.interval)
    if problems:
        for problem in problems:
            logger.error("Invalid configuration: %s", problem)
        return 1

    monitor = SystemMonitor(ApiClient(config.API_URL, config.API_TOKEN), checks=checks, check_interval=args.interval)
    if args.run_now:
        return 0 if monitor.run_check() in ("sent", "skipped") else 1

    try:
        monitor.run_forever()
    except KeyboardInterrupt:
        logger.info("healthagent stopped by user. Exiting gracefully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
