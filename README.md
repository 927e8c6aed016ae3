# ccasim

A small simulator of Arm Confidential Compute Architecture (CCA) concepts,
written in plain Python with no third-party dependencies:

- the four worlds (root, normal, secure, realm), each run on its own thread
  (`ccasim.world`);
- a two-level granule protection table (GPT) that gives every physical
  granule a GPI value: root, non-secure, secure, realm or any
  (`ccasim.gpt`, with constants and descriptor helpers in `ccasim.gptdefs`);
- per-world memory bookkeeping (`ccasim.memory.MemoryManager`);
- realms with private memory XOR-encrypted with a random 32-byte key, and
  shared memory, including a malicious realm that tries to read another
  realm's memory (`ccasim.realm.RealmMonitor`);
- a TrustZone-style normal/secure memory model with a random access test
  (`ccasim.trustzone.TrustZone`).

## Installation

```
pip install .
```

For the test suite:

```
pip install .[test]
pytest
```

## Commands

### `ccasim`

Allocates memory for each of the four worlds, attests them, starts the root
world (which builds the GPT), waits up to two seconds for it, then starts the
normal, secure and realm worlds and waits for them before freeing the memory.

```
ccasim [--memory-size BYTES] [--wait SECONDS] [--no-realm]
```

- `--memory-size`: bytes allocated per world (default 1 GB, mapped lazily).
- `--wait`: seconds to let the non-root worlds run (default 5).
- `--no-realm`: do not start the realm world.

The realm world forks one process per realm, so it needs a system with
`os.fork`.

### `ccasim-gpt-check`

Builds the default GPT (four 1 GB PAS regions for the root, normal, secure
and realm worlds in the 4 GB protected space) and times lookups of random
addresses in `[0, 4 GB]`, printing the L1 descriptor for each one, or
`unmapped` for an address outside the table.

```
ccasim-gpt-check [-n ITERATIONS] [--seed SEED]
```

`-n/--iterations` defaults to 100000.

### `ccasim-trustzone`

Runs the normal/secure world demonstration: writes and reads normal memory,
is refused when writing secure memory from the normal world, switches to the
secure world and accesses both kinds of memory, runs the random access test
and reports how many accesses fell in secure, normal or unmapped memory.

```
ccasim-trustzone [--block-size BYTES] [-n ITERATIONS] [--seed SEED]
```

The defaults are ten normal and ten secure blocks of 200 MB each (normal
blocks from address 0, secure blocks from `0x80000000`) and 100000 test
iterations.

## Library use

```python
from ccasim.gpt import GranuleProtectionTable
from ccasim.gptdefs import PpsSize, PgsSize, region_base

table = GranuleProtectionTable(PpsSize.PPS_4GB, PgsSize.PGS_4K)
for index in range(4):
    table.add_pas_region(region_base(index), 0x40000000, index)
table.init_l0()
table.init_l1()
print(hex(table.granule_gpi(0xC0001000)))  # 0xb, the realm GPI
```

`check_pas_gpi` returns the whole 64-bit L1 descriptor covering an address;
`granule_gpi` returns the 4-bit GPI of a single granule. Invalid parameters,
overlapping or misaligned regions and lookups outside the table raise
`ccasim.gptdefs.GptError`.

Realms:

```python
import random
from ccasim.realm import RealmMonitor

with RealmMonitor(random.Random(1)) as monitor:
    victim = monitor.create("victim", ["victim"], 4096, 2048, False)
    attacker = monitor.create("attacker", ["attacker"], 4096, 2048, True)
    print(monitor.get(victim).read_private())      # Realm 1 private data
    report = monitor.attempt_malicious_access(attacker)
    print(report.private_success, report.shared_success)  # False True
```

`RealmMonitor.start`, `stop`, `wait_all` and `destroy` fork, terminate,
reap and release realm processes.

Progress and diagnostic messages of the GPT, memory manager, realm monitor
and TrustZone model go through the standard `logging` module under the
`ccasim.*` logger names; configure logging to see them.

## What the package does not do

- A realm's program path and arguments are only recorded; no realm program
  is executed. The forked realm process runs the built-in normal or
  malicious behaviour instead. `ccasim.realm.realm_vm_banner` gives the line
  each of the three realm VM programs would print.
- Realm shared memory is an anonymous memory map; the shared-memory name is
  recorded but no named system shared-memory object is created.
- The simulation models access rules in software only; it does not touch
  real hardware protection or physical memory.