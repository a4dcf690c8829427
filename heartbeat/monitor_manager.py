import asyncio
import logging
from typing import Optional

from check_cycle import CheckCycle, CycleResult
from config import MonitorConfig
from failure_tracker import FailureTracker
from notifications import HeartbeatClient
from storage import Storage
from trace_manager import EventKind, TraceEvent, TraceManager, trace_manager

logger = logging.getLogger("RconHeartbeat.MonitorManager")


class MonitorManager:
    """Process-level loop: one check cycle every check_interval seconds, forever."""

    def __init__(
        self,
        config: MonitorConfig,
        cycle: Optional[CheckCycle] = None,
        storage: Optional[Storage] = None,
        trace: TraceManager = trace_manager,
    ):
        self.config = config
        self.trace = trace
        if cycle is None:
            cycle = CheckCycle(
                config,
                FailureTracker(config.failure_threshold),
                HeartbeatClient(config.heartbeat_url, timeout=config.timeout),
                trace=trace,
            )
        self.cycle = cycle
        # The tracker outlives cycles and has no other writer
        self.tracker = cycle.tracker
        self.storage = storage or Storage(config.history_file)
        self.running = False
        self.cycles_run = 0
        self.latest_result: Optional[CycleResult] = None
        self._stop_event = asyncio.Event()

    def log_startup(self):
        cfg = self.config
        logger.info("[INIT] Starting RCON Heartbeat Monitor")
        logger.info(f"[CONFIG] Host: {cfg.host}:{cfg.port}")
        logger.info(f"[CONFIG] Transport: {cfg.transport.value}")
        logger.info(f"[CONFIG] Secure: {cfg.secure}")
        logger.info(f"[CONFIG] Check Interval: {cfg.check_interval}s")
        logger.info(f"[CONFIG] Attempts per cycle: {cfg.attempts_per_cycle}")
        logger.info(f"[CONFIG] Timeout: {cfg.timeout_ms}ms")
        logger.info(f"[CONFIG] Consecutive failures threshold: {cfg.failure_threshold}")

    async def run_once(self) -> CycleResult:
        result = await self.cycle.run()
        self.cycles_run += 1
        self.latest_result = result
        await self.storage.write_cycle_result(result.to_dict())
        return result

    async def run_loop(self):
        self.running = True
        self._stop_event.clear()
        self.log_startup()
        self.trace.emit(TraceEvent(kind=EventKind.STARTED))

        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                # Keep monitoring no matter what a single cycle does
                logger.error(f"Error in Monitor Loop: {e}")

            if not self.running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.check_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Monitor Loop Stopped")

    def stop(self):
        self.running = False
        self._stop_event.set()
        logger.info("Stopping Monitor Loop...")

    def get_status(self):
        cfg = self.config
        return {
            "running": self.running,
            "endpoint": f"{cfg.host}:{cfg.port}",
            "transport": cfg.transport.value,
            "secure": cfg.secure,
            "cycles_run": self.cycles_run,
            "consecutive_failures": self.tracker.consecutive_failures,
            "failure_threshold": self.tracker.threshold,
            "classification": self.tracker.classification.value,
            "latest_result": self.latest_result.to_dict() if self.latest_result else None,
        }
