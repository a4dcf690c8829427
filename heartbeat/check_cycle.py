"""One liveness check cycle: up to K sequential RCON attempts with jitter"""
import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from config import MonitorConfig, Transport
from errors import ErrorKind, HeartbeatDeliveryError, RconError
from failure_tracker import Classification, FailureTracker
from notifications import HeartbeatClient
from rcon_clients import ProtocolClient, create_client
from trace_manager import EventKind, TraceEvent, TraceManager, trace_manager

logger = logging.getLogger("RconHeartbeat.CheckCycle")

RESPONSE_PREVIEW = 100


@dataclass
class AttemptResult:
    index: int
    success: bool
    duration_ms: float
    response: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    error_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "error_name": self.error_name,
        }


@dataclass
class CycleResult:
    success: bool
    attempts: List[AttemptResult]
    classification: Classification
    consecutive_failures: int
    response: Optional[str] = None
    heartbeat_error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "classification": self.classification.value,
            "consecutive_failures": self.consecutive_failures,
            "response_preview": self.response[:RESPONSE_PREVIEW] if self.response is not None else None,
            "heartbeat_error": self.heartbeat_error,
            "timestamp": self.timestamp,
            "attempts": [a.to_dict() for a in self.attempts],
        }


ClientFactory = Callable[[Transport, str], ProtocolClient]


class CheckCycle:
    """
    Drives up to attempts_per_cycle connect/auth/command exchanges.

    Stops at the first successful attempt. Between failed attempts it sleeps a
    uniformly random delay in [0, jitter_max); never after the last one. All
    per-attempt errors are absorbed here and only the CycleResult escapes.
    """

    def __init__(
        self,
        config: MonitorConfig,
        tracker: FailureTracker,
        heartbeat: HeartbeatClient,
        client_factory: ClientFactory = create_client,
        trace: TraceManager = trace_manager,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config
        self.tracker = tracker
        self.heartbeat = heartbeat
        self.client_factory = client_factory
        self.trace = trace
        self.sleep = sleep
        self.rng = rng

    async def run(self) -> CycleResult:
        total = self.config.attempts_per_cycle
        attempts: List[AttemptResult] = []

        for index in range(1, total + 1):
            result = await self._attempt(index)
            attempts.append(result)

            if result.success:
                return await self._on_success(attempts, result.response)

            error_details = {"message": result.error, "kind": result.error_kind.value if result.error_kind else None,
                             "name": result.error_name}
            logger.warning(f"[ATTEMPT {index}/{total}] Connection failed: {json.dumps(error_details)}")
            self.trace.emit(TraceEvent(
                kind=EventKind.ATTEMPT_FAILED,
                attempt_index=index,
                error_kind=result.error_kind.value if result.error_kind else None,
                detail=result.error,
            ))

            if index < total:
                delay = self.rng() * self.config.jitter_max
                logger.debug(f"Waiting {delay * 1000:.0f}ms before attempt {index + 1}")
                await self.sleep(delay)

        return self._on_failure(attempts)

    async def _attempt(self, index: int) -> AttemptResult:
        config = self.config
        endpoint = config.endpoint
        client = self.client_factory(config.transport, config.client_name)
        started = time.monotonic()

        try:
            await client.connect(endpoint, config.timeout)
            await client.authenticate(endpoint.credential, config.timeout)
            response = await client.execute_command(config.command, config.timeout)
        except RconError as e:
            return AttemptResult(
                index=index,
                success=False,
                duration_ms=(time.monotonic() - started) * 1000,
                error_kind=e.kind,
                error=str(e),
                error_name=type(e).__name__,
            )
        except Exception as e:
            logger.exception(f"Unexpected error during attempt {index}")
            return AttemptResult(
                index=index,
                success=False,
                duration_ms=(time.monotonic() - started) * 1000,
                error=str(e),
                error_name=type(e).__name__,
            )
        finally:
            await client.close()

        preview = response[:RESPONSE_PREVIEW] if response else "empty"
        logger.info(f"[UP] {client.transport} RCON connected | Response: {preview}...")
        return AttemptResult(
            index=index,
            success=True,
            duration_ms=(time.monotonic() - started) * 1000,
            response=response,
        )

    async def _on_success(self, attempts: List[AttemptResult], response: Optional[str]) -> CycleResult:
        classification = self.tracker.on_cycle_success()
        self.trace.emit(TraceEvent(kind=EventKind.CYCLE_SUCCEEDED, attempt_index=len(attempts)))

        heartbeat_error = None
        try:
            await self.heartbeat.notify()
        except HeartbeatDeliveryError as e:
            # The server answered; only the report failed
            heartbeat_error = str(e)
            logger.error(f"[HEARTBEAT] Delivery failed: {e}")
            self.trace.emit(TraceEvent(kind=EventKind.HEARTBEAT_FAILED, detail=heartbeat_error))

        return CycleResult(
            success=True,
            attempts=attempts,
            classification=classification,
            consecutive_failures=self.tracker.consecutive_failures,
            response=response,
            heartbeat_error=heartbeat_error,
        )

    def _on_failure(self, attempts: List[AttemptResult]) -> CycleResult:
        classification = self.tracker.on_cycle_failure()
        count = self.tracker.consecutive_failures

        if classification is Classification.DOWN:
            logger.error(f"[DOWN] Server unreachable after {len(attempts)} attempts "
                         f"({count} consecutive failures)")
            self.trace.emit(TraceEvent(kind=EventKind.CYCLE_FAILED_DOWN, count=count))
        else:
            logger.warning(f"[WARN] Failed cycle but below threshold ({count}/{self.tracker.threshold})")
            self.trace.emit(TraceEvent(kind=EventKind.CYCLE_FAILED_WARN, count=count))

        return CycleResult(
            success=False,
            attempts=attempts,
            classification=classification,
            consecutive_failures=count,
        )
