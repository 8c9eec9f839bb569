import asyncio
import logging
import os
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .classification.batch import BatchRun

logger = logging.getLogger("starflow.api")


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------

def _env_int(name: str, default: int, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r, fallback to %s", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("Out-of-range %s=%r, fallback to %s", name, raw, default)
        return default
    return value


# ---------------------------------------------------------------------------
# Environment-derived constants
# ---------------------------------------------------------------------------

API_SEMAPHORE_LIMIT = _env_int("API_SEMAPHORE_LIMIT", 5, minimum=1)
DEFAULT_CLASSIFY_CONCURRENCY = _env_int("CLASSIFY_CONCURRENCY", 2, minimum=1)
CLASSIFY_CONCURRENCY_MAX = _env_int("CLASSIFY_CONCURRENCY_MAX", 10, minimum=1)
DEFAULT_CLASSIFY_INTERVAL_MS = _env_int("CLASSIFY_REQUEST_INTERVAL_MS", 2500, minimum=0)
CLASSIFY_INTERVAL_MS_MAX = _env_int("CLASSIFY_INTERVAL_MS_MAX", 60000, minimum=0)
CLASSIFY_BATCH_LIMIT_MAX = _env_int("CLASSIFY_BATCH_LIMIT_MAX", 500, minimum=1)
README_FETCH_CONCURRENCY = _env_int("README_FETCH_CONCURRENCY", 3, minimum=1)


# ---------------------------------------------------------------------------
# Active batch run
# ---------------------------------------------------------------------------

class BatchRunHolder:
    """Keeps the single batch run that may be active for this process."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._run: Optional["BatchRun"] = None

    @property
    def current(self) -> Optional["BatchRun"]:
        return self._run

    async def start(self, run: "BatchRun") -> None:
        async with self._lock:
            if self._run is not None and self._run.is_processing:
                raise RuntimeError("A batch classification is already running")
            self._run = run
            run.start()

    async def clear(self) -> None:
        async with self._lock:
            if self._run is not None and self._run.is_processing:
                self._run.cancel()
            self._run = None
