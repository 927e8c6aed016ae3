"""Realms: encrypted private memory, shared memory and forked realm processes."""

from __future__ import annotations

import logging
import mmap
import os
import random
import signal
import sys
import time
from dataclasses import dataclass
from itertools import cycle

log = logging.getLogger(__name__)

KEY_LENGTH = 32
MAX_ARGS = 31
PEEK_SIZE = 256
DUMP_LIMIT = 16
REALM_VM_COUNT = 3


class RealmError(Exception):
    """Raised when a realm cannot be created, found or started."""


def xor_encrypt(data, key) -> bytes:
    """XOR ``data`` with the repeating ``key``; applying it twice restores the data."""
    raw = bytes(data)
    if not raw or not key:
        return raw
    return bytes(b ^ k for b, k in zip(raw, cycle(bytes(key))))


def generate_random_key(length: int, rng: random.Random | None = None) -> bytes:
    """Return ``length`` random key bytes drawn from ``rng``."""
    if length <= 0:
        raise RealmError(f"Invalid key length: {length}")
    rng = rng if rng is not None else random.Random()
    return bytes(rng.randrange(256) for _ in range(length))


def format_memory(data, base_address: int) -> str:
    """Render up to the first sixteen bytes of ``data`` as a hex dump line."""
    raw = bytes(data)
    shown = "".join(f"{b:02X} " for b in raw[:DUMP_LIMIT])
    more = "..." if len(raw) > DUMP_LIMIT else ""
    return f"        Memory content at 0x{base_address:016x}: {shown}{more}"


def realm_vm_banner(index: int) -> str:
    """The line printed by realm VM program number ``index``."""
    if not 1 <= index <= REALM_VM_COUNT:
        raise RealmError(f"No realm VM numbered {index}")
    return f"Realm VM{index} is running..."


def _c_string(data) -> str:
    return bytes(data).split(b"\0", 1)[0].decode("latin-1")


@dataclass
class RealmMemory:
    """A block of realm memory, private or shared between processes."""

    data: bytearray | mmap.mmap
    is_shared: bool = False
    name: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    def close(self) -> None:
        if isinstance(self.data, mmap.mmap) and not self.data.closed:
            self.data.close()


@dataclass
class Realm:
    """One realm: its program, memory, key and running process."""

    id: int
    program: str
    argv: list[str]
    private_memory: RealmMemory
    shared_memory: RealmMemory | None
    key: bytes
    is_malicious: bool = False
    pid: int | None = None

    def read_private(self) -> str:
        """Decrypt the private memory and return the text it holds."""
        return _c_string(xor_encrypt(self.private_memory.data, self.key))

    def read_shared(self) -> str | None:
        """The text held in shared memory, or None without shared memory."""
        if self.shared_memory is None:
            return None
        return _c_string(self.shared_memory.data[:])


@dataclass(frozen=True)
class AccessReport:
    """Outcome of one malicious realm's attempt on another realm's memory."""

    attacker_id: int
    target_id: int
    private_success: bool
    private_data: str
    shared_success: bool | None = None
    shared_data: str | None = None

    def lines(self) -> list[str]:
        out = [
            f"[REALM] Realm {self.attacker_id} (malicious) attempting to access "
            f"Realm {self.target_id} private memory..."
        ]
        if self.private_success:
            out.append(
                f"[REALM] ATTACK SUCCESSFUL! Realm {self.attacker_id} accessed "
                f"Realm {self.target_id} private data: {self.private_data}"
            )
        else:
            out.append(
                f"[REALM] ATTACK FAILED! Realm {self.attacker_id} cannot access "
                f"Realm {self.target_id} private memory"
            )
        if self.shared_success is not None:
            out.append(
                f"[REALM] Realm {self.attacker_id} attempting to access "
                f"Realm {self.target_id} shared memory..."
            )
            if self.shared_success:
                out.append(f"[REALM] Access to shared memory successful (expected): {self.shared_data}")
            else:
                out.append("[REALM] Shared memory access failed unexpectedly")
        return out


class RealmMonitor:
    """Creates, runs and tears down realms."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng if rng is not None else random.Random()
        self.realms: list[Realm] = []
        self._next_id = 1
        self.attack_delay = 1.0
        self.run_seconds = 10.0

    def __enter__(self) -> "RealmMonitor":
        return self

    def __exit__(self, *exc_info) -> None:
        for realm in list(self.realms):
            self.destroy(realm.id)

    def _find(self, realm_id: int) -> Realm | None:
        return next((r for r in self.realms if r.id == realm_id), None)

    def create(self, program, argv, private_size, shared_size, is_malicious=False) -> int:
        """Create a realm and return its id."""
        realm_id = self._next_id
        private_text = f"Realm {realm_id} private data".encode() + b"\0"
        shared_text = f"Realm {realm_id} shared data".encode() + b"\0"
        if private_size < len(private_text):
            raise RealmError(f"Private memory of {private_size} bytes is too small")
        if shared_size < 0 or 0 < shared_size < len(shared_text):
            raise RealmError(f"Invalid shared memory size: {shared_size}")
        self._next_id += 1

        private = bytearray(private_size)
        private[: len(private_text)] = private_text
        log.info("[REALM] Realm %d Private Mem Size: 0x%x", realm_id, private_size)
        key = generate_random_key(KEY_LENGTH, self.rng)
        private[:] = xor_encrypt(private, key)
        log.info("[REALM] Realm %d encrypted memory:", realm_id)
        log.info("%s", format_memory(private, id(private)))

        shared = None
        if shared_size > 0:
            try:
                buffer = mmap.mmap(-1, shared_size)
            except (OSError, ValueError) as exc:
                raise RealmError("Shared memory creation failed") from exc
            buffer[: len(shared_text)] = shared_text
            shared = RealmMemory(buffer, True, f"/realm_shm_realm{realm_id}_shared")

        realm = Realm(
            id=realm_id,
            program=str(program),
            argv=[str(a) for a in list(argv or [])[:MAX_ARGS]],
            private_memory=RealmMemory(private),
            shared_memory=shared,
            key=key,
            is_malicious=bool(is_malicious),
        )
        self.realms.append(realm)
        return realm_id

    def get(self, realm_id: int) -> Realm:
        """Return the realm with ``realm_id``."""
        realm = self._find(realm_id)
        if realm is None:
            raise RealmError(f"No realm with id {realm_id}")
        return realm

    def attempt_malicious_access(self, attacker_id: int) -> AccessReport | None:
        """Let a malicious realm read another realm's memory; None if it cannot try."""
        attacker = self._find(attacker_id)
        if attacker is None or not attacker.is_malicious:
            return None
        target = next((r for r in self.realms if r.id != attacker_id), None)
        if target is None:
            return None
        private_data = _c_string(target.private_memory.data[:PEEK_SIZE])
        shared_success = shared_data = None
        if target.shared_memory is not None:
            shared_data = _c_string(target.shared_memory.data[:PEEK_SIZE])
            shared_success = "shared data" in shared_data
        report = AccessReport(
            attacker_id=attacker_id,
            target_id=target.id,
            private_success="private data" in private_data,
            private_data=private_data,
            shared_success=shared_success,
            shared_data=shared_data,
        )
        for line in report.lines():
            log.info("%s", line)
        return report

    def _run_realm(self, realm: Realm) -> None:
        kind = "malicious" if realm.is_malicious else "normal"
        print(f"[REALM] Realm {realm.id} ({kind}) starting program: {realm.program}")
        if realm.is_malicious:
            time.sleep(self.attack_delay)
            report = self.attempt_malicious_access(realm.id)
            if report is not None:
                print("\n".join(report.lines()))
            return
        print(f"[REALM] Realm {realm.id} running normally")
        print(f"[REALM] Realm {realm.id} decrypting memory...")
        print(f"[REALM] Realm {realm.id} accessing its own private data: {realm.read_private()}")
        shared = realm.read_shared()
        if shared is not None:
            print(f"[REALM] Realm {realm.id} accessing its own shared data: {shared}")
        time.sleep(self.run_seconds)

    def start(self, realm_id: int) -> bool:
        """Fork a process that runs the realm; False if there is no such realm."""
        realm = self._find(realm_id)
        if realm is None:
            return False
        if not hasattr(os, "fork"):
            raise RealmError("Starting a realm needs os.fork")
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            pid = os.fork()
        except OSError as exc:
            log.error("fork: %s", exc)
            return False
        if pid == 0:
            code = 0
            try:
                self._run_realm(realm)
            except BaseException:
                code = 1
            finally:
                sys.stdout.flush()
                sys.stderr.flush()
                os._exit(code)
        realm.pid = pid
        log.info("[REALM] Realm %d started with PID %d", realm_id, pid)
        return True

    def stop(self, realm_id: int) -> bool:
        """Terminate a running realm; False if it is not running."""
        realm = self._find(realm_id)
        if realm is None or realm.pid is None:
            return False
        try:
            os.kill(realm.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        try:
            os.waitpid(realm.pid, 0)
        except ChildProcessError:
            pass
        realm.pid = None
        return True

    def wait_all(self) -> list[tuple[int, int]]:
        """Wait for every running realm; return (id, exit code) pairs."""
        results = []
        for realm in self.realms:
            if realm.pid is None:
                continue
            _, status = os.waitpid(realm.pid, 0)
            code = os.waitstatus_to_exitcode(status)
            log.info("Realm %d exited with status %d", realm.id, code)
            results.append((realm.id, code))
            realm.pid = None
        return results

    def destroy(self, realm_id: int) -> bool:
        """Stop the realm if it runs, release its memory and forget it."""
        realm = self._find(realm_id)
        if realm is None:
            return False
        if realm.pid is not None:
            self.stop(realm_id)
        realm.private_memory.close()
        if realm.shared_memory is not None:
            realm.shared_memory.close()
        self.realms.remove(realm)
        return True