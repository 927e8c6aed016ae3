"""Run the four worlds: allocate their memory, attest them and start their threads."""

from __future__ import annotations

import argparse
import sys
import time

from .gptdefs import SIZE_1GB
from .memory import WORLD_COUNT, MemoryManager, WorldMemoryError
from .world import DEFAULT_ENTRIES, WorldType, initialize_all_worlds

ROOT_WAIT = 2.0
DEFAULT_WAIT = 5.0


def simulate_authentication(world) -> None:
    """Attest one world."""
    print(f"[CCA] Attestation World {int(world.world_type)}...")
    print(f"[CCA] Attestation successful for World {int(world.world_type)}.")


def main(argv=None) -> int:
    """Initialize, attest and start every world, then release their memory."""
    parser = argparse.ArgumentParser(description="Simulate the root, normal, secure and realm worlds.")
    parser.add_argument("--memory-size", type=int, default=SIZE_1GB, help="bytes per world")
    parser.add_argument("--wait", type=float, default=DEFAULT_WAIT, help="seconds to let worlds run")
    parser.add_argument("--no-realm", action="store_true", help="do not start the realm world")
    args = parser.parse_args(argv)
    if args.memory_size < 0:
        parser.error("memory size must not be negative")
    if args.wait < 0:
        parser.error("wait must not be negative")

    worlds = initialize_all_worlds(list(WorldType), DEFAULT_ENTRIES)
    manager = MemoryManager(WORLD_COUNT)

    print("[GPT]========== CCA World Memory Allocation ==========")
    print("[CCA] Memory Allocation Starting...")
    try:
        memories = [manager.allocate(w.world_type, args.memory_size) for w in worlds]
    except WorldMemoryError as exc:
        print(f"[ERR] {exc}", file=sys.stderr)
        return 1
    for world in worlds:
        print(
            f"{world.world_type.label} World allocated memory size: "
            f"0x{manager.size(world.world_type):x} Bytes"
        )

    print("[GPT]========== CCA World Attestation ==========")
    print("[CCA] Attestation Starting...")
    for world in worlds:
        simulate_authentication(world)

    print("[GPT]========== CCA World Starting ==========")
    root, *others = worlds
    root.start()
    root.join(ROOT_WAIT)
    if args.no_realm:
        others = [w for w in others if w.world_type is not WorldType.REALM]
    for world in others:
        world.start()
    deadline = time.monotonic() + args.wait
    for world in others:
        world.join(max(0.0, deadline - time.monotonic()))

    for world, memory in zip(worlds, memories):
        manager.free(world.world_type, memory)
    return 0