"""Two-world memory isolation: normal and secure blocks behind one virtual address space."""

from __future__ import annotations

import argparse
import logging
import mmap
import random
import time
from dataclasses import dataclass
from enum import Enum

log = logging.getLogger(__name__)

BLOCK_SIZE = 200 * 1024 * 1024
NORMAL_WORLD_BLOCKS = 10
SECURE_WORLD_BLOCKS = 10
TEST_ITERATIONS = 100000
ADDRESS_SPACE_SIZE = 4 * 1024 * 1024 * 1024
NORMAL_BASE = 0x00000000
SECURE_BASE = 0x80000000
VIOLATION_VALUE = 0xFF
PROGRESS_EVERY = 1000

_DEMO_NORMAL_ADDR = 0x10000000
_DEMO_SECURE_ADDR = 0x90000000


class TzWorld(Enum):
    """The world the processor is currently executing in."""

    NORMAL = "normal"
    SECURE = "secure"


@dataclass
class MemoryBlock:
    """One backing block mapped at ``virtual_base``."""

    data: mmap.mmap
    virtual_base: int
    is_secure: bool

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def end(self) -> int:
        return self.virtual_base + self.size

    def contains(self, address: int) -> bool:
        return self.virtual_base <= address < self.end


@dataclass(frozen=True)
class AccessStats:
    """Outcome of a random access test."""

    iterations: int
    secure: int
    normal: int
    invalid: int

    @property
    def valid(self) -> int:
        return self.secure + self.normal

    @property
    def valid_percent(self) -> float:
        return self.valid * 100 / self.iterations if self.iterations else 0.0

    @property
    def invalid_percent(self) -> float:
        return self.invalid * 100 / self.iterations if self.iterations else 0.0


class TrustZone:
    """Normal blocks from address 0, secure blocks from 0x80000000; secure ones need the secure world."""

    def __init__(
        self,
        block_size: int = BLOCK_SIZE,
        normal_blocks: int = NORMAL_WORLD_BLOCKS,
        secure_blocks: int = SECURE_WORLD_BLOCKS,
    ) -> None:
        if block_size <= 0:
            raise ValueError(f"Invalid block size: {block_size}")
        if normal_blocks < 0 or secure_blocks < 0:
            raise ValueError("Block counts must not be negative")
        if NORMAL_BASE + normal_blocks * block_size > SECURE_BASE:
            raise ValueError("Normal world memory overlaps the secure world range")
        if SECURE_BASE + secure_blocks * block_size > ADDRESS_SPACE_SIZE:
            raise ValueError("Secure world memory exceeds the address space")
        self.block_size = block_size
        self.normal_count = normal_blocks
        self.secure_count = secure_blocks
        self.world = TzWorld.NORMAL
        self.blocks: list[MemoryBlock] = []
        try:
            for i in range(normal_blocks):
                self._add_block(NORMAL_BASE + i * block_size, False)
            for i in range(secure_blocks):
                self._add_block(SECURE_BASE + i * block_size, True)
        except BaseException:
            self.close()
            raise

    def _add_block(self, base: int, secure: bool) -> None:
        block = MemoryBlock(mmap.mmap(-1, self.block_size), base, secure)
        self.blocks.append(block)
        kind = "secure" if secure else "normal"
        log.info("Allocated %s world block %d: virtual 0x%08x", kind, len(self.blocks) - 1, base)

    def close(self) -> None:
        """Release every block."""
        for block in self.blocks:
            if not block.data.closed:
                block.data.close()
        self.blocks = []

    def __enter__(self) -> "TrustZone":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def normal_end(self) -> int:
        return NORMAL_BASE + self.normal_count * self.block_size

    @property
    def secure_end(self) -> int:
        return SECURE_BASE + self.secure_count * self.block_size

    def switch_world(self, new_world) -> None:
        """Switch the current world."""
        new_world = TzWorld(new_world)
        log.info("Switching world: %s -> %s", self.world.value, new_world.value)
        self.world = new_world

    def _find(self, address: int) -> MemoryBlock | None:
        return next((b for b in self.blocks if b.contains(address)), None)

    def translate(self, address: int) -> tuple[MemoryBlock, int] | None:
        """Return the block holding ``address`` and the offset into it, or None if unmapped."""
        block = self._find(address)
        if block is None:
            log.info("Address translation failed: 0x%08x is not mapped", address)
            return None
        return block, address - block.virtual_base

    def check_access(self, address: int) -> bool:
        """Whether the current world may touch ``address``."""
        block = self._find(address)
        if block is None:
            return False
        return not block.is_secure or self.world is TzWorld.SECURE

    def read(self, address: int) -> int:
        """Read one byte; 0xFF on a violation or an unmapped address."""
        if not self.check_access(address):
            log.warning("Security violation: illegal read at 0x%08x", address)
            return VIOLATION_VALUE
        found = self.translate(address)
        if found is None:
            return VIOLATION_VALUE
        block, offset = found
        return block.data[offset]

    def write(self, address: int, value: int) -> bool:
        """Write one byte; False on a violation or an unmapped address."""
        if not self.check_access(address):
            log.warning("Security violation: illegal write at 0x%08x", address)
            return False
        found = self.translate(address)
        if found is None:
            return False
        block, offset = found
        block.data[offset] = value & 0xFF
        return True

    def random_access_test(self, iterations: int = TEST_ITERATIONS, seed: int | None = None) -> AccessStats:
        """Read or write random addresses across the 4GB space and count where they land."""
        if iterations < 0:
            raise ValueError(f"Invalid iteration count: {iterations}")
        rng = random.Random(seed if seed is not None else time.time_ns())
        secure = normal = invalid = 0
        for i in range(iterations):
            addr = rng.randrange(ADDRESS_SPACE_SIZE)
            if rng.randrange(2) == 0:
                self.write(addr, rng.randrange(256))
            else:
                self.read(addr)
            if SECURE_BASE <= addr < self.secure_end:
                secure += 1
            elif addr < self.normal_end:
                normal += 1
            else:
                invalid += 1
            if (i + 1) % PROGRESS_EVERY == 0:
                log.info("Completed %d/%d tests...", i + 1, iterations)
        return AccessStats(iterations, secure, normal, invalid)


def _demo_address(preferred: int, base: int, end: int) -> int:
    return preferred if base <= preferred < end else base


def main(argv=None) -> int:
    """Run the two-world demonstration and the random access test."""
    parser = argparse.ArgumentParser(description="Normal/secure world memory isolation demo.")
    parser.add_argument("--block-size", type=int, default=BLOCK_SIZE)
    parser.add_argument("-n", "--iterations", type=int, default=TEST_ITERATIONS)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)
    if args.iterations < 0:
        parser.error("iterations must not be negative")
    logging.basicConfig(level=logging.WARNING, format="%(message)s")

    try:
        zone = TrustZone(args.block_size)
    except (ValueError, OSError) as exc:
        parser.error(str(exc))
    with zone as tz:
        normal_addr = _demo_address(_DEMO_NORMAL_ADDR, NORMAL_BASE, tz.normal_end)
        secure_addr = _demo_address(_DEMO_SECURE_ADDR, SECURE_BASE, tz.secure_end)

        print("\nOperating in the normal world:")
        tz.write(normal_addr, 0xAB)
        print(f"Read normal memory (0x{normal_addr:08x}): 0x{tz.read(normal_addr):02X}")

        print("Trying to access secure memory from the normal world:")
        if not tz.write(secure_addr, 0xCD):
            print(f"Security violation: illegal write at 0x{secure_addr:08x}")

        tz.switch_world(TzWorld.SECURE)
        print("\nOperating in the secure world:")
        tz.write(secure_addr, 0xEF)
        print(f"Read secure memory (0x{secure_addr:08x}): 0x{tz.read(secure_addr):02X}")
        tz.write(normal_addr, 0x99)
        print(f"Read normal memory (0x{normal_addr:08x}): 0x{tz.read(normal_addr):02X}")

        print(f"\nStarting secure world random access test (4GB space, {args.iterations} iterations)...")
        stats = tz.random_access_test(args.iterations, args.seed)
        print("\nTest results:")
        print(f"Valid accesses: {stats.valid} ({stats.valid_percent:.2f}%)")
        print(f"  - Secure memory accesses: {stats.secure}")
        print(f"  - Normal memory accesses: {stats.normal}")
        print(f"Invalid accesses: {stats.invalid} ({stats.invalid_percent:.2f}%)")

        tz.switch_world(TzWorld.NORMAL)
        print("\nBack in the normal world:")
        print(
            f"Read previously written normal memory (0x{normal_addr:08x}): "
            f"0x{tz.read(normal_addr):02X}"
        )
    return 0