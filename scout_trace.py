"""
Request-scoped tracing for SoundScout requests.

Provides a thread-local TraceContext that records:
  - Per-stage timing (index, aggregate, compose, ...) with errors
  - Per-outbound-call timing (overpass, open_meteo, tomtom, nominatim)
  - End-of-request summary (total_elapsed, total_api_calls, outcome)

Usage:
    from scout_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    with ctx.stage("aggregate"):
        ...
    ctx.log_summary()
    clear_trace()

    # In API clients:
    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class APICallRecord:
    """One outbound HTTP call."""
    service: str          # "overpass" | "open_meteo" | "tomtom" | "nominatim"
    endpoint: str         # caller or API path, e.g. "city_facilities", "reverse"
    elapsed_ms: int
    status_code: int
    provider_status: str = ""
    stage: str = ""       # which request stage was running


@dataclass
class StageRecord:
    stage_name: str
    elapsed_ms: int = 0
    api_calls_made: int = 0
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    _current_stage: str = ""

    # Maximum per-call records included in summary_dict.
    MAX_CALL_RECORDS = 200

    @contextmanager
    def stage(self, name: str):
        """Time a block as one stage; exceptions are recorded and re-raised."""
        previous = self._current_stage
        self._current_stage = name
        start = time.time()
        try:
            yield self
        except Exception as e:
            self.record_stage(name, start, time.time(), type(e).__name__, str(e))
            raise
        else:
            self.record_stage(name, start, time.time())
        finally:
            self._current_stage = previous

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        api_in_stage = sum(1 for c in self.api_calls if c.stage == stage_name)
        rec = StageRecord(
            stage_name=stage_name,
            elapsed_ms=int((end_ts - start_ts) * 1000),
            api_calls_made=api_in_stage,
            error_class=error_class,
            error_message=error_message,
        )
        self.stages.append(rec)

        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms api_calls=%d%s",
            self.trace_id,
            stage_name,
            "ERR" if error_class else "OK",
            rec.elapsed_ms,
            api_in_stage,
            err_info,
        )

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        rec = APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=int(elapsed_ms),
            status_code=status_code,
            provider_status=provider_status,
            stage=self._current_stage,
        )
        self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            self._current_stage or "-",
            service,
            endpoint,
            rec.elapsed_ms,
            status_code,
            provider_status,
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.request_start) * 1000)
        errored = [s for s in self.stages if s.error_class]
        completed = [s for s in self.stages if not s.error_class]

        if errored and not completed:
            outcome = "error"
        elif not self.stages:
            outcome = "empty"
        elif errored:
            outcome = "partial"
        else:
            outcome = "success"

        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": len(self.api_calls),
            "stages_completed": len(completed),
            "stages_errored": len(errored),
            "final_outcome": outcome,
            "calls": [
                {
                    "service": c.service,
                    "endpoint": c.endpoint,
                    "stage": c.stage,
                    "elapsed_ms": c.elapsed_ms,
                    "status_code": c.status_code,
                }
                for c in self.api_calls[:self.MAX_CALL_RECORDS]
            ],
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d "
            "completed=%d errored=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["stages_completed"],
            s["stages_errored"],
            s["final_outcome"],
        )

    def stages_to_list(self) -> List[Dict[str, Any]]:
        return [
            {
                "stage": s.stage_name,
                "elapsed_ms": s.elapsed_ms,
                "api_calls": s.api_calls_made,
                "error": (
                    f"{s.error_class}: {s.error_message}"
                    if s.error_class else None
                ),
            }
            for s in self.stages
        ]


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current request's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None
