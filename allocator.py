import logging
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Default geometry
TOTAL_BLOCKS = 1000
BLOCK_SIZE = 512  # bytes


class AllocationConflict(ValueError):
    """Raised when an exact range cannot be marked (used or out of bounds)"""


class BlockAllocator:
    """Fixed pool of fixed-size blocks with contiguous first-fit allocation.

    There is no compaction and no coalescing beyond what the bitmap gives for
    free: external fragmentation is visible through free_runs().
    """

    def __init__(self, total_blocks: int = TOTAL_BLOCKS, block_size: int = BLOCK_SIZE):
        if not isinstance(total_blocks, int) or total_blocks <= 0:
            raise ValueError(f"total_blocks must be a positive integer, got {total_blocks!r}")
        if not isinstance(block_size, int) or block_size <= 0:
            raise ValueError(f"block_size must be a positive integer, got {block_size!r}")
        self._total_blocks = total_blocks
        self._block_size = block_size
        self._blocks = bytearray(total_blocks)  # 1 = in use
        self._owners: Dict[int, str] = {}

    @property
    def total_blocks(self) -> int:
        return self._total_blocks

    @property
    def block_size(self) -> int:
        return self._block_size

    def blocks_for(self, size: int) -> int:
        """Blocks needed to hold `size` bytes, never less than one"""
        return max(1, (size + self._block_size - 1) // self._block_size)

    def allocate(self, blocks_needed: int, owner: str) -> Optional[int]:
        """Reserve the lowest-index run of `blocks_needed` free blocks.

        Returns the start index, or None when no contiguous run is large
        enough. A request for zero blocks returns 0 and marks nothing.
        """
        if blocks_needed < 0:
            raise ValueError(f"Cannot allocate {blocks_needed} blocks")
        if blocks_needed == 0:
            return 0

        i = 0
        last_start = self._total_blocks - blocks_needed
        while i <= last_start:
            # Jump past the last used block inside the candidate window
            used = self._last_used_in(i, i + blocks_needed)
            if used is None:
                for j in range(i, i + blocks_needed):
                    self._blocks[j] = 1
                    self._owners[j] = owner
                logger.debug("Allocated blocks [%d, %d) to %r", i, i + blocks_needed, owner)
                return i
            i = used + 1

        logger.warning(
            "No contiguous run of %d blocks for %r (%d free, largest run %d)",
            blocks_needed, owner, self.free_block_count(), self.largest_free_run(),
        )
        return None

    def _last_used_in(self, start: int, end: int) -> Optional[int]:
        for j in range(end - 1, start - 1, -1):
            if self._blocks[j]:
                return j
        return None

    def deallocate(self, start_block: int, count: int):
        """Free [start_block, start_block + count); out-of-range indices are ignored"""
        lo = max(start_block, 0)
        hi = min(start_block + count, self._total_blocks)
        for i in range(lo, hi):
            self._blocks[i] = 0
            self._owners.pop(i, None)
        if hi > lo:
            logger.debug("Freed blocks [%d, %d)", lo, hi)

    def mark(self, start_block: int, count: int, owner: str):
        """Mark an exact range as used, e.g. when rebuilding from a saved tree"""
        if count <= 0:
            raise AllocationConflict(f"Invalid block count {count}")
        if start_block < 0 or start_block + count > self._total_blocks:
            raise AllocationConflict(
                f"Range [{start_block}, {start_block + count}) outside [0, {self._total_blocks})"
            )
        for i in range(start_block, start_block + count):
            if self._blocks[i]:
                raise AllocationConflict(
                    f"Block {i} already owned by {self._owners.get(i)!r}, wanted by {owner!r}"
                )
        for i in range(start_block, start_block + count):
            self._blocks[i] = 1
            self._owners[i] = owner

    def reset(self):
        self._blocks = bytearray(self._total_blocks)
        self._owners.clear()

    def is_used(self, block: int) -> bool:
        return bool(self._blocks[block])

    def owner_of(self, block: int) -> Optional[str]:
        return self._owners.get(block)

    def owners(self) -> Dict[int, str]:
        return dict(self._owners)

    def free_block_count(self) -> int:
        return self._total_blocks - self.used_block_count()

    def used_block_count(self) -> int:
        return sum(self._blocks)

    def usage_percentage(self) -> float:
        return self.used_block_count() * 100.0 / self._total_blocks

    def free_runs(self) -> List[Tuple[int, int]]:
        """Maximal free runs as (start, length), in index order"""
        runs = []
        start = None
        for i, used in enumerate(self._blocks):
            if not used and start is None:
                start = i
            elif used and start is not None:
                runs.append((start, i - start))
                start = None
        if start is not None:
            runs.append((start, self._total_blocks - start))
        return runs

    def largest_free_run(self) -> int:
        return max((length for _, length in self.free_runs()), default=0)

    def fragmentation(self) -> float:
        """0.0 when all free space is one run, approaching 1.0 as it scatters"""
        free = self.free_block_count()
        if free == 0:
            return 0.0
        return 1.0 - self.largest_free_run() / free

    def __repr__(self) -> str:
        return (
            f"BlockAllocator(total_blocks={self._total_blocks}, block_size={self._block_size}, "
            f"used={self.used_block_count()})"
        )
