"""The four worlds of the realm architecture, each run on its own thread."""

from __future__ import annotations

import logging
import random
import sys
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import IntEnum

from .gpt import GranuleProtectionTable
from .gptdefs import SIZE_1GB, GptError, region_base
from .memory import WORLD_COUNT
from .realm import RealmError, RealmMonitor

log = logging.getLogger(__name__)


class WorldType(IntEnum):
    """World kinds, numbered as the entry table is indexed."""

    ROOT = 0
    NORMAL = 1
    SECURE = 2
    REALM = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class WorldState(IntEnum):
    """Lifecycle of a world."""

    INITIALIZED = 0
    RUNNING = 1
    TERMINATED = 2


_ACCESS = {
    WorldType.SECURE: frozenset({WorldType.SECURE, WorldType.NORMAL}),
    WorldType.NORMAL: frozenset({WorldType.NORMAL}),
    WorldType.ROOT: frozenset(WorldType),
    WorldType.REALM: frozenset({WorldType.NORMAL, WorldType.REALM}),
}


def can_access(source, target) -> bool:
    """Whether world ``source`` may access memory of world ``target``."""
    return WorldType(target) in _ACCESS[WorldType(source)]


def _announce(kind: WorldType) -> frozenset[WorldType]:
    print(f"[CCA] {kind.label} World is running.")
    return _ACCESS[kind]


def normal_world() -> frozenset[WorldType]:
    """Entry of the normal world; returns the worlds it may access."""
    return _announce(WorldType.NORMAL)


def secure_world() -> frozenset[WorldType]:
    """Entry of the secure world; returns the worlds it may access."""
    return _announce(WorldType.SECURE)


def root_world() -> GranuleProtectionTable | None:
    """Entry of the root world: build the GPT; None if a stage fails."""
    print("[CCA] Root World is running.")
    table = GranuleProtectionTable()
    print("[GPT] PAS region initialization starting...")
    try:
        for i in range(WORLD_COUNT):
            table.add_pas_region(region_base(i), SIZE_1GB, i)
    except GptError as exc:
        print(f"[GPT] PAS region initialization failed... {exc}")
        return None
    print("[GPT] L0 GPT initialization starting...")
    try:
        table.init_l0()
    except GptError as exc:
        print(f"[GPT] L0 GPT initialization failed... {exc}")
        return None
    print("[GPT] L1 GPT initialization starting...")
    try:
        table.init_l1()
    except GptError as exc:
        print(f"[GPT] L1 GPT initialization failed... {exc}")
        return None
    return table


def realm_world():
    """Entry of the realm world: run a normal and a malicious realm; return their exit codes."""
    print("[GPT] ========== Realm VM Simulation ==========")
    print("[CCA] Realm World is running.")
    with RealmMonitor(random.Random()) as monitor:
        try:
            normal_id = monitor.create(
                "./benchmark/realm1", ["normal_realm", "--role", "normal"], 4096, 2048, False
            )
            malicious_id = monitor.create(
                "./benchmark/realm2", ["malicious_realm", "--role", "malicious"], 4096, 2048, True
            )
        except RealmError as exc:
            print(f"Failed to create realms: {exc}", file=sys.stderr)
            return None
        print(f"[REALM] Created Realms: {normal_id} (normal) and {malicious_id} (malicious)")
        print("[REALM] Realm VM Attestation...")
        time.sleep(1)
        try:
            if not monitor.start(normal_id):
                print("Failed to start normal realm", file=sys.stderr)
                return None
            if not monitor.start(malicious_id):
                print("Failed to start malicious realm", file=sys.stderr)
                monitor.stop(normal_id)
                return None
        except RealmError as exc:
            print(f"Failed to start realms: {exc}", file=sys.stderr)
            return None
        results = monitor.wait_all()
        for realm_id, code in results:
            print(f"Realm {realm_id} exited with status {code}")
        return results


DEFAULT_ENTRIES: tuple[Callable[[], object], ...] = (root_world, normal_world, secure_world, realm_world)


@dataclass
class World:
    """One world with its entry function and the thread that runs it."""

    world_id: int
    world_type: WorldType
    entry: Callable[[], object]
    state: WorldState = WorldState.INITIALIZED
    thread: threading.Thread | None = field(default=None, repr=False)
    result: object = field(default=None, repr=False)

    def _run(self) -> None:
        self.result = self.entry()

    def start(self) -> None:
        """Run the entry on a new thread; only an initialized world starts."""
        if self.state is not WorldState.INITIALIZED:
            return
        thread = threading.Thread(
            target=self._run, name=f"world-{self.world_type.label.lower()}", daemon=True
        )
        try:
            thread.start()
        except RuntimeError as exc:
            log.error("[CCA] Failed to start world of type %d: %s", int(self.world_type), exc)
            return
        self.thread = thread
        self.state = WorldState.RUNNING

    def join(self, timeout: float | None = None) -> WorldState:
        """Wait for the world's thread; the world is terminated once it has finished."""
        if self.thread is not None:
            self.thread.join(timeout)
            if not self.thread.is_alive():
                self.state = WorldState.TERMINATED
        return self.state


def initialize_all_worlds(types: Sequence, entries: Sequence[Callable[[], object]]) -> list[World]:
    """Create one world per type, taking its entry from ``entries`` indexed by type."""
    worlds = []
    for index, kind in enumerate(types):
        kind = WorldType(kind)
        if kind >= len(entries):
            raise ValueError(f"No entry for world type {int(kind)}")
        worlds.append(World(index, kind, entries[kind]))
    return worlds