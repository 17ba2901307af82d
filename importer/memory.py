"""Memory monitoring and batch sizing for import runs."""
import gc
import logging
import math
import resource

logger = logging.getLogger(__name__)

MB = 1024 * 1024
SEQUENTIAL_THRESHOLD = 5
SAFE_USAGE_PERCENT = 80


def compute_batch_size(
    base_batch_size: int,
    total_records: int,
    available_bytes: float,
    target_bytes: float
) -> int:
    """
    Compute how many records to process per batch.

    Batches shrink linearly with the memory headroom when less than the
    target budget is available.

    Args:
        base_batch_size: Configured batch size
        total_records: Number of records in the run
        available_bytes: Memory still available under the limit
        target_bytes: Memory budget a full batch is sized for

    Returns:
        Batch size, at least 1
    """
    base_batch_size = max(1, base_batch_size)

    # Small runs are processed sequentially in a single batch
    if 0 < total_records < SEQUENTIAL_THRESHOLD:
        return total_records

    if available_bytes < target_bytes:
        memory_factor = max(0.0, available_bytes) / target_bytes
        adjusted = max(1, math.floor(base_batch_size * memory_factor))
        return min(adjusted, base_batch_size)

    return base_batch_size


class MemoryProbe:
    """Reports process memory usage against a configured limit."""

    def __init__(self, limit_mb: int, target_mb: int = 128):
        """
        Initialize the memory probe.

        Args:
            limit_mb: Hard memory limit of the host (e.g. Lambda memory size)
            target_mb: Memory budget a full batch is sized for
        """
        self.limit_bytes = limit_mb * MB
        self.target_bytes = target_mb * MB

    def current_bytes(self) -> int:
        """Return the resident set size of this process."""
        try:
            with open('/proc/self/statm', 'r') as statm:
                resident_pages = int(statm.read().split()[1])
            return resident_pages * resource.getpagesize()
        except (OSError, ValueError, IndexError):
            # ru_maxrss is reported in kilobytes on Linux
            return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024

    def available_bytes(self) -> int:
        return self.limit_bytes - self.current_bytes()

    def usage_percent(self) -> float:
        return (self.current_bytes() / self.limit_bytes) * 100

    def is_safe(self) -> bool:
        """Keep usage under SAFE_USAGE_PERCENT of the limit."""
        return self.usage_percent() < SAFE_USAGE_PERCENT

    def batch_size(self, base_batch_size: int, total_records: int) -> int:
        return compute_batch_size(
            base_batch_size,
            total_records,
            self.available_bytes(),
            self.target_bytes
        )

    def collect(self) -> int:
        """Force garbage collection and return the number of objects freed."""
        before = self.current_bytes()
        collected = gc.collect()
        logger.debug(
            f"Garbage collection freed {collected} objects "
            f"({(before - self.current_bytes()) / MB:.2f} MB)"
        )
        return collected

    def info(self) -> dict:
        current = self.current_bytes()
        return {
            'current_mb': round(current / MB, 2),
            'limit_mb': round(self.limit_bytes / MB, 2),
            'available_mb': round((self.limit_bytes - current) / MB, 2),
            'usage_percent': round((current / self.limit_bytes) * 100, 2)
        }
