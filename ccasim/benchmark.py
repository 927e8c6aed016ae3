"""Random Granule Protection Table lookups over the default four-world layout."""

from __future__ import annotations

import argparse
import random
import sys
import time
from collections.abc import Iterator
from dataclasses import dataclass

from .gpt import GranuleProtectionTable
from .gptdefs import PAS_REGION_COUNT, SIZE_1GB, SIZE_4GB, GptError, region_base

DEFAULT_ITERATIONS = 100000
_RAND_BITS = 31


@dataclass(frozen=True)
class CheckResult:
    """One timed lookup: the address and the L1 descriptor found (None if unmapped)."""

    index: int
    address: int
    descriptor: int | None
    elapsed: float


def build_default_table() -> GranuleProtectionTable:
    """Build the table with four 1GB regions for the root, normal, secure and realm worlds."""
    table = GranuleProtectionTable()
    for index in range(PAS_REGION_COUNT):
        table.add_pas_region(region_base(index), SIZE_1GB, index)
    table.init_l0()
    table.init_l1()
    return table


def random_address(rng: random.Random, max_size: int = SIZE_4GB) -> int:
    """Draw an address in ``[0, max_size]`` from three 31-bit random values."""
    if max_size < 0:
        raise ValueError(f"Invalid maximum size: {max_size}")
    value = (
        (rng.getrandbits(_RAND_BITS) << 32)
        | (rng.getrandbits(_RAND_BITS) << 16)
        | rng.getrandbits(_RAND_BITS)
    )
    return value % (max_size + 1)


def run_gpt_check(
    table: GranuleProtectionTable,
    iterations: int = DEFAULT_ITERATIONS,
    seed: int | None = None,
) -> Iterator[CheckResult]:
    """Yield ``iterations`` timed lookups of random addresses."""
    if iterations < 0:
        raise ValueError(f"Invalid iteration count: {iterations}")
    rng = random.Random(seed if seed is not None else time.time_ns())

    def checks() -> Iterator[CheckResult]:
        for index in range(iterations):
            address = random_address(rng)
            start = time.perf_counter()
            try:
                descriptor = table.check_pas_gpi(address)
            except GptError:
                descriptor = None
            elapsed = time.perf_counter() - start
            yield CheckResult(index, address, descriptor, elapsed)

    return checks()


def main(argv=None) -> int:
    """Build the default table and time random GPT lookups."""
    parser = argparse.ArgumentParser(description="Time random Granule Protection Table lookups.")
    parser.add_argument("-n", "--iterations", type=int, default=DEFAULT_ITERATIONS)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)
    if args.iterations < 0:
        parser.error("iterations must not be negative")

    print("[CCA] Root World is running.")
    try:
        table = build_default_table()
    except GptError as exc:
        print(f"[GPT] GPT initialization failed: {exc}", file=sys.stderr)
        return 1

    for result in run_gpt_check(table, args.iterations, args.seed):
        gpi = "unmapped" if result.descriptor is None else f"0x{result.descriptor:x}"
        print(
            f"[GPT] [{result.index}]cycle: {result.elapsed:f} "
            f"addr: 0x{result.address:x} gpi: {gpi}"
        )
    return 0