"""
Structured logging for batch runs.

Provides single-line JSON logs carrying a run id and the current stage, so
every line of one scheduler invocation can be correlated, plus context
managers that time stages and text service calls.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime

# Context variables for run correlation
run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
stage_var: ContextVar[str | None] = ContextVar("stage", default=None)

# Extra record attributes copied into JSON output when present
_EXTRA_FIELDS = (
    "event",
    "duration_ms",
    "items_processed",
    "items_total",
    "items_succeeded",
    "items_failed",
    "model",
    "provider",
    "call_type",
    "tokens_in",
    "tokens_out",
    "cost_usd",
    "item_id",
    "outcome",
    "score",
    "period_kind",
    "period_key",
    "feed",
    "url",
)


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "run_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        run_id = run_id_var.get()
        if run_id:
            log_data["run_id"] = run_id

        stage = stage_var.get()
        if stage:
            log_data["stage"] = stage

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure root logging for a CLI invocation.

    Args:
        json_format: If True, use JSON format (for log shippers). If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("trafilatura").setLevel(logging.WARNING)
    logging.getLogger("readability").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_stage(stage: str, run_id: str | None = None):
    """
    Context manager for stage-level logging.

    Logs stage start and end with duration. Exceptions are logged and re-raised;
    the caller decides whether a failed stage aborts anything.

    Usage:
        with log_stage("filter", run_id=run_id):
            ...
    """
    if run_id:
        run_id_var.set(run_id)
    stage_var.set(stage)

    start_time = time.time()
    logger = logging.getLogger("technews.pipeline")

    logger.info(f"Stage {stage} started", extra={"event": "stage_start"})

    try:
        yield
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Stage {stage} completed",
            extra={"event": "stage_complete", "duration_ms": duration_ms},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Stage {stage} failed: {e}",
            extra={"event": "stage_failed", "duration_ms": duration_ms},
            exc_info=True,
        )
        raise
    finally:
        stage_var.set(None)


@contextmanager
def log_llm_call(provider: str, model: str, call_type: str):
    """
    Context manager for text service call instrumentation.

    Usage:
        with log_llm_call("openai", "gpt-4o-mini", "summary") as metrics:
            response = client.chat.completions.create(...)
            metrics["tokens_in"] = response.usage.prompt_tokens
            metrics["tokens_out"] = response.usage.completion_tokens
    """
    start_time = time.time()
    logger = logging.getLogger("technews.llm")
    metrics: dict = {"tokens_in": 0, "tokens_out": 0}

    try:
        yield metrics

        duration_ms = int((time.time() - start_time) * 1000)
        cost_usd = _estimate_llm_cost(provider, model, metrics["tokens_in"], metrics["tokens_out"])

        logger.info(
            f"LLM call completed: {provider}/{model} ({duration_ms}ms, ${cost_usd:.4f})",
            extra={
                "event": "llm_call_complete",
                "provider": provider,
                "model": model,
                "call_type": call_type,
                "duration_ms": duration_ms,
                "tokens_in": metrics["tokens_in"],
                "tokens_out": metrics["tokens_out"],
                "cost_usd": cost_usd,
            },
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.warning(
            f"LLM call failed: {provider}/{model} - {e}",
            extra={
                "event": "llm_call_failed",
                "provider": provider,
                "model": model,
                "call_type": call_type,
                "duration_ms": duration_ms,
            },
        )
        raise


# -----------------------------------------------------------------------------
# Progress Tracker
# -----------------------------------------------------------------------------


@dataclass
class ProgressTracker:
    """
    Track progress for batch operations with periodic logging.

    Usage:
        tracker = ProgressTracker(total=len(items), stage="summarized", log_every=5)
        for item in items:
            ok = process(item)
            tracker.increment(ok)
        tracker.finish()
    """

    total: int
    stage: str
    log_every: int = 10

    processed: int = field(default=0, init=False)
    succeeded: int = field(default=0, init=False)
    failed: int = field(default=0, init=False)
    _start_time: float = field(default_factory=time.time, init=False)
    _logger: logging.Logger = field(init=False)

    def __post_init__(self):
        self._logger = logging.getLogger("technews.progress")

    def increment(self, success: bool = True) -> None:
        self.processed += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1

        if self.processed % self.log_every == 0 or self.processed == self.total:
            self._log_progress()

    def _log_progress(self) -> None:
        self._logger.info(
            f"{self.stage}: {self.processed}/{self.total} "
            f"({self.succeeded} ok, {self.failed} failed)",
            extra={
                "event": "progress_update",
                "items_processed": self.processed,
                "items_total": self.total,
                "items_succeeded": self.succeeded,
                "items_failed": self.failed,
            },
        )

    def finish(self) -> dict:
        """Finalize progress tracking and return summary."""
        elapsed = time.time() - self._start_time

        self._logger.info(
            f"{self.stage}: Completed {self.processed}/{self.total} "
            f"({self.succeeded} ok, {self.failed} failed) in {elapsed:.1f}s",
            extra={
                "event": "progress_complete",
                "items_processed": self.processed,
                "items_total": self.total,
                "items_succeeded": self.succeeded,
                "items_failed": self.failed,
                "duration_ms": int(elapsed * 1000),
            },
        )

        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_seconds": round(elapsed, 1),
        }


# -----------------------------------------------------------------------------
# LLM Cost Estimation
# -----------------------------------------------------------------------------

# Approximate costs per 1M tokens
LLM_COSTS = {
    ("openai", "gpt-4o"): {"input": 2.50, "output": 10.00},
    ("openai", "gpt-4o-mini"): {"input": 0.15, "output": 0.60},
    ("openai", "gpt-5-mini"): {"input": 0.25, "output": 2.00},
    ("anthropic", "claude-haiku-4-5"): {"input": 1.00, "output": 5.00},
    ("anthropic", "claude-sonnet-4-5"): {"input": 3.00, "output": 15.00},
}


def _estimate_llm_cost(provider: str, model: str, tokens_in: int, tokens_out: int) -> float:
    """Estimate call cost based on token usage."""
    key = (provider.lower(), model.lower())
    costs = LLM_COSTS.get(key)

    # Partial match for dated model names
    if not costs:
        for (p, m), c in LLM_COSTS.items():
            if p == provider.lower() and m in model.lower():
                costs = c
                break

    if not costs:
        costs = {"input": 1.0, "output": 3.0}

    input_cost = (tokens_in / 1_000_000) * costs["input"]
    output_cost = (tokens_out / 1_000_000) * costs["output"]

    return round(input_cost + output_cost, 6)
