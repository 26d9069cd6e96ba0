# src/goalcore/metrics.py
"""
Prometheus metrics for progress cache maintenance.

The recalculator records every chain it walks: how long it took, how many
cache rows it wrote and whether it ended in an error. Stale-write retries
are counted separately so contention between concurrent writers is
visible. The API server exposes the default registry under ``/metrics``.
"""

import logging
from typing import Optional

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# ============================================================================
# Recalculation Metrics
# ============================================================================

recalculation_duration_seconds = Histogram(
    'goalcore_recalculation_duration_seconds',
    'Duration of bottom-up recalculation chains in seconds',
    ['outcome'],  # outcome: success|error
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, float('inf')]
)

cache_rows_written_total = Counter(
    'goalcore_cache_rows_written_total',
    'Total number of progress cache rows written by recalculations'
)

recalculation_errors_total = Counter(
    'goalcore_recalculation_errors_total',
    'Total number of recalculation chains that ended in an error',
    ['error_type']
)

stale_write_retries_total = Counter(
    'goalcore_stale_write_retries_total',
    'Total number of cache writes retried after a concurrent modification'
)

# ============================================================================
# Metric Helper Functions
# ============================================================================


def record_recalculation(duration: float, rows_written: int, error: Optional[str] = None) -> None:
    """
    Record metrics for one recalculation chain.

    Args:
        duration: Chain duration in seconds.
        rows_written: Cache rows committed, including those written before
            a failure.
        error: Exception class name if the chain failed.
    """
    try:
        outcome = "error" if error else "success"
        recalculation_duration_seconds.labels(outcome=outcome).observe(duration)
        if rows_written:
            cache_rows_written_total.inc(rows_written)
        if error:
            recalculation_errors_total.labels(error_type=error).inc()
    except Exception as e:
        logger.warning(f"Failed to record recalculation metrics: {e}")


def record_stale_retry() -> None:
    try:
        stale_write_retries_total.inc()
    except Exception as e:
        logger.warning(f"Failed to record stale retry metric: {e}")
