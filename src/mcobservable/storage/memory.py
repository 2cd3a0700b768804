"""Memory checks for preallocated measurement buffers.

Preallocating `alloc` measurements of a large array observable can exceed
available memory before a single sample is taken. This module:
1. Estimates the footprint of a buffer before it is allocated
2. Warns when it approaches available system memory
3. Recommends an alloc that fits a memory budget
"""

import logging
from typing import Any, Optional, Tuple

import numpy as np
import psutil

logger = logging.getLogger(__name__)


# Warning threshold: preallocation above 80% of available memory
WARNING_THRESHOLD_RATIO = 0.80

# Budget share of available memory used by recommend_alloc
DEFAULT_BUDGET_RATIO = 0.25


def get_available_memory_mb() -> float:
    """Get available system memory in MB."""
    return psutil.virtual_memory().available / 1024 / 1024


def estimate_buffer_mb(shape: Tuple[int, ...], dtype: Any, capacity: int) -> float:
    """Estimate the memory held by a preallocated buffer.

    Args:
        shape: Shape of one measurement
        dtype: numpy dtype of a measurement
        capacity: Number of preallocated measurements

    Returns:
        Footprint in MB
    """
    per_measurement = int(np.prod(shape, dtype=np.int64)) * np.dtype(dtype).itemsize
    return capacity * per_measurement / 1024 / 1024


def check_preallocation(shape: Tuple[int, ...], dtype: Any, capacity: int) -> bool:
    """Log a warning if a buffer would take most of the available memory.

    Returns:
        True if the footprint is below the warning threshold
    """
    footprint = estimate_buffer_mb(shape, dtype, capacity)
    available = get_available_memory_mb()

    if footprint >= available * WARNING_THRESHOLD_RATIO:
        logger.warning(
            f"Preallocating {footprint:.0f} MB for {capacity} measurements "
            f"({available:.0f} MB available). "
            f"Consider alloc={recommend_alloc(shape, dtype)} or inmemory=False"
        )
        return False

    logger.debug(f"Preallocating {footprint:.2f} MB for {capacity} measurements")
    return True


def recommend_alloc(
    shape: Tuple[int, ...],
    dtype: Any,
    budget_mb: Optional[float] = None,
) -> int:
    """Get the largest alloc whose buffer fits a memory budget.

    Args:
        shape: Shape of one measurement
        dtype: numpy dtype of a measurement
        budget_mb: Memory budget (default 25% of available memory)

    Returns:
        Recommended alloc, at least 1
    """
    if budget_mb is None:
        budget_mb = get_available_memory_mb() * DEFAULT_BUDGET_RATIO

    per_measurement_mb = estimate_buffer_mb(shape, dtype, 1)
    if per_measurement_mb == 0:
        return 1
    return max(1, int(budget_mb / per_measurement_mb))
