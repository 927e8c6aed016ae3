"""Tracking of memory handed out to the simulated worlds."""

from __future__ import annotations

import logging
import mmap
from dataclasses import dataclass

log = logging.getLogger(__name__)

WORLD_COUNT = 4


class WorldMemoryError(Exception):
    """Raised for invalid world memory requests."""


@dataclass
class Allocation:
    """One tracked allocation."""

    memory: bytearray | mmap.mmap
    size: int


def _new_buffer(size: int) -> bytearray | mmap.mmap:
    if size < 0:
        raise WorldMemoryError(f"Invalid allocation size: {size}")
    if size == 0:
        return bytearray()
    try:
        # Anonymous maps are committed lazily, so large world sizes stay cheap.
        return mmap.mmap(-1, size)
    except (OSError, ValueError, OverflowError, MemoryError) as exc:
        raise WorldMemoryError("Memory allocation failed.") from exc


class MemoryManager:
    """Fixed table of allocation slots, one per world."""

    def __init__(self, slots: int = WORLD_COUNT) -> None:
        self._slots: list[Allocation | None] = [None] * slots

    def reset(self) -> None:
        """Forget every tracked allocation."""
        self._slots = [None] * len(self._slots)

    def allocate(self, world_type, size: int):
        """Allocate ``size`` bytes for a world and track it in the first free slot."""
        if world_type is None:
            raise WorldMemoryError("Invalid world.")
        memory = _new_buffer(size)
        for index, slot in enumerate(self._slots):
            if slot is None:
                self._slots[index] = Allocation(memory, size)
                break
        log.info("[CCA] Allocated %d bytes for world type %d", size, int(world_type))
        return memory

    def _slot(self, index: int) -> Allocation | None:
        try:
            return self._slots[int(index)]
        except IndexError:
            raise WorldMemoryError(f"No allocation slot {int(index)}") from None

    def pointer(self, world_type):
        """Memory tracked in the slot numbered by ``world_type``, or None."""
        if world_type is None:
            raise WorldMemoryError("Invalid world.")
        slot = self._slot(world_type)
        return slot.memory if slot else None

    def pointer_by_id(self, index: int):
        """Memory tracked in slot ``index``, or None."""
        slot = self._slot(index)
        return slot.memory if slot else None

    def size(self, world_type) -> int:
        """Size tracked in the slot numbered by ``world_type``, or 0."""
        if world_type is None:
            raise WorldMemoryError("Invalid world.")
        slot = self._slot(world_type)
        return slot.size if slot else 0

    def free(self, world_type, memory) -> None:
        """Release ``memory`` and clear the slot that tracks it."""
        if world_type is None or memory is None:
            raise WorldMemoryError("Invalid world or memory.")
        for index, slot in enumerate(self._slots):
            if slot is not None and slot.memory is memory:
                if isinstance(memory, mmap.mmap):
                    memory.close()
                self._slots[index] = None
                log.info("Freed memory for world type %d", int(world_type))
                return
        raise WorldMemoryError(f"Memory not found for world type {int(world_type)}")