"""Two-level Granule Protection Table built from PAS region descriptions."""

from __future__ import annotations

import logging

from .gptdefs import (
    GPI_MASK,
    L0_BLK_DESC_GPI_SHIFT,
    L0_REGION_SIZE,
    L0_TBL_DESC_SHIFT,
    L0_TYPE_BLK_DESC,
    L0_TYPE_MASK,
    L0_TYPE_TBL_DESC,
    L0GPTSZ,
    PAS_REGION_COUNT,
    REGION_GPIS,
    S_VAL,
    ULONG_MAX,
    Gpi,
    GptError,
    MapType,
    PasRegion,
    PgsSize,
    PpsSize,
    build_l1_desc,
    l0_block_desc,
    l0_index,
    l0_table_desc,
    l1_entry_count,
    l1_gpi_index,
    l1_index_mask,
    pgs_p,
    pps_t,
    validate_pps,
)

log = logging.getLogger(__name__)


def _overlaps(base_1: int, size_1: int, base_2: int, size_2: int) -> bool:
    return base_1 + size_1 > base_2 and base_2 + size_2 > base_1


class GranuleProtectionTable:
    """An L0 table of block or table descriptors backed by L1 granule tables."""

    def __init__(self, pps: int = PpsSize.PPS_4GB, pgs: int = PgsSize.PGS_4K) -> None:
        self.pps = validate_pps(pps)
        self.p = pgs_p(pgs)
        self.pgs = PgsSize(pgs)
        self.t = pps_t(self.pps)
        self.l0: list[int] = []
        self.l1_tables: list[list[int]] = []
        self.regions: dict[int, PasRegion] = {}
        self.l1_index_mask = l1_index_mask(self.p)
        self.l1_entries_written = 0

    @property
    def granule_size(self) -> int:
        return 1 << self.p

    @property
    def pps_size(self) -> int:
        return 1 << self.t

    @property
    def l0_region_count(self) -> int:
        width = self.t - S_VAL if self.t > S_VAL else 0
        return (0x3FFFFF >> (22 - width)) + 1

    def _l1_index(self, address: int) -> int:
        return (address >> (self.p + 4)) & self.l1_index_mask

    def _ordered_regions(self) -> list[PasRegion]:
        return [self.regions[key] for key in sorted(self.regions)]

    def add_pas_region(self, base: int, size: int, index: int) -> PasRegion:
        """Register a granule-mapped PAS region in slot ``index``."""
        if not 0 <= index < PAS_REGION_COUNT:
            raise GptError(f"PAS region index {index} out of range")
        if base < 0 or size <= 0:
            raise GptError(f"Invalid PAS[{index}] base 0x{base:x} size 0x{size:x}")
        attr = (MapType.GRANULE << 4) | REGION_GPIS[index]
        region = PasRegion(base, size, attr)
        self.regions[index] = region
        log.info(
            "[GPT] PAS[%d] region base: 0x%x, size: 0x%x, ATTR: 0x%x",
            index, base, size, attr,
        )
        return region

    def init_l0(self) -> None:
        """Fill the L0 table with block descriptors whose GPI is ANY."""
        validate_pps(self.pps)
        desc = l0_block_desc(Gpi.ANY)
        self.l0 = [desc] * self.l0_region_count
        self.l1_tables = []
        log.info("[GPT] L0 table initialized")
        log.info("      L0 region number: %d", len(self.l0))
        log.info("      L0 descriptor: 0x%x", desc)

    def _require_l0(self) -> None:
        if not self.l0:
            raise GptError("L0 table is not initialized")

    @staticmethod
    def _previous_pas_here(l0_idx: int, previous: list[PasRegion]) -> bool:
        start = L0_REGION_SIZE * l0_idx
        return any(
            _overlaps(start, L0_REGION_SIZE, region.base, region.size)
            for region in previous
        )

    def l1_region_count(self) -> int:
        """Validate the regions and return the number of L1 tables they need."""
        self._require_l0()
        regions = self._ordered_regions()
        total = 0
        for pos, region in enumerate(regions):
            if ULONG_MAX - region.base < region.size:
                raise GptError(f"Address overflow in PAS[{pos}]")
            if region.end > self.pps_size:
                raise GptError(f"PAS[{pos}] size invalid")
            for later, other in enumerate(regions[pos + 1:], start=pos + 1):
                if _overlaps(region.base, region.size, other.base, other.size):
                    raise GptError(f"PAS[{pos}] overlaps with PAS[{later}]")

            first_l0 = l0_index(region.base)
            last_l0 = l0_index(region.end - 1)
            for i in range(first_l0, last_l0 + 1):
                entry = self.l0[i]
                unmapped = (
                    entry & L0_TYPE_MASK == L0_TYPE_BLK_DESC
                    and (entry >> L0_BLK_DESC_GPI_SHIFT) & GPI_MASK == Gpi.ANY
                )
                if not unmapped:
                    raise GptError(f"PAS[{pos}] overlaps with previous L0[{i}]!")

            if region.map_type is MapType.BLOCK:
                if region.base % L0_REGION_SIZE or region.size % L0_REGION_SIZE:
                    raise GptError(f"PAS[{pos}] is not block-aligned")
                continue

            if region.base % self.granule_size or region.size % self.granule_size:
                raise GptError(f"PAS[{pos}] is not granule-aligned")

            count = last_l0 - first_l0 + 1
            previous = regions[:pos]
            if count > 1 and self._previous_pas_here(last_l0, previous):
                count -= 1
            if self._previous_pas_here(first_l0, previous):
                count -= 1
            total += count
        return total

    def _new_l1_table(self) -> int:
        self.l1_tables.append([build_l1_desc(Gpi.ANY)] * l1_entry_count(self.p))
        return len(self.l1_tables) - 1

    def _l1_end_pa(self, cur_pa: int, end_pa: int) -> int:
        cur_idx = l0_index(cur_pa)
        if cur_idx == l0_index(end_pa):
            return end_pa
        return (cur_idx + 1) * L0_REGION_SIZE

    def _fill_l1(self, table: list[int], first: int, last: int, gpi: int) -> None:
        desc = build_l1_desc(gpi)
        mask = (ULONG_MAX << (l1_gpi_index(self.p, first) << 2)) & ULONG_MAX
        last_index = self._l1_index(last)
        for i in range(self._l1_index(first), last_index + 1):
            if i == last_index:
                mask &= mask >> ((15 - l1_gpi_index(self.p, last)) << 2)
            table[i] = (table[i] & ~mask & ULONG_MAX) | (desc & mask)
            self.l1_entries_written += 1
            mask = ULONG_MAX

    def _map_blocks(self, region: PasRegion) -> None:
        desc = l0_block_desc(region.gpi)
        for idx in range(l0_index(region.base), l0_index(region.end)):
            self.l0[idx] = desc
            log.info("[GPT] L0 entry (BLOCK) index[%d] GPI: 0x%x Desc: 0x%x", idx, region.gpi, desc)

    def _map_granules(self, region: PasRegion) -> None:
        end_pa = region.end
        cur_pa = region.base
        for idx in range(l0_index(region.base), l0_index(end_pa - 1) + 1):
            entry = self.l0[idx]
            if entry & L0_TYPE_MASK == L0_TYPE_TBL_DESC:
                table_index = entry >> L0_TBL_DESC_SHIFT
            else:
                table_index = self._new_l1_table()
                self.l0[idx] = l0_table_desc(table_index)
            log.info(
                "[GPT] L0 entry (TABLE) index[%d] ==> L1 table %d L0 TBL DESC: 0x%x",
                idx, table_index, self.l0[idx],
            )
            next_pa = self._l1_end_pa(cur_pa, end_pa)
            self._fill_l1(self.l1_tables[table_index], cur_pa, next_pa - self.granule_size, region.gpi)
            cur_pa = next_pa

    def init_l1(self) -> int:
        """Validate the regions, build the L1 tables and return the table count."""
        count = self.l1_region_count()
        log.info("[GPT] Total L1 table count: 0x%x", count)
        self.l1_index_mask = l1_index_mask(self.p)
        log.info("[GPT]========== GPT Configuration ==========")
        log.info("     PPS/T:            0x%x/%d", self.pps, self.t)
        log.info("     PGS/P:            0x%x/%d", self.pgs, self.p)
        log.info("     L0GPTSZ/S:        0x%x/%d", L0GPTSZ, S_VAL)
        log.info("     PAS region count: %d", PAS_REGION_COUNT)
        for pos, region in enumerate(self._ordered_regions()):
            log.info(
                "[GPT] PAS[%d] base: 0x%x size: 0x%x GPI: 0x%x MapType: 0x%x",
                pos, region.base, region.size, region.gpi, region.map_type,
            )
            if region.map_type is MapType.BLOCK:
                self._map_blocks(region)
            else:
                self._map_granules(region)
        return count

    def _l0_entry(self, address: int) -> int:
        self._require_l0()
        idx = l0_index(address) if address >= 0 else -1
        if not 0 <= idx < len(self.l0):
            raise GptError(f"Address 0x{address:x} is outside the protected space")
        return self.l0[idx]

    def check_pas_gpi(self, address: int) -> int:
        """Return the 64-bit L1 descriptor covering ``address``."""
        entry = self._l0_entry(address)
        if entry & L0_TYPE_MASK != L0_TYPE_TBL_DESC:
            raise GptError(f"Address 0x{address:x} is not mapped by an L1 table")
        return self.l1_tables[entry >> L0_TBL_DESC_SHIFT][self._l1_index(address)]

    def granule_gpi(self, address: int) -> int:
        """Return the 4-bit GPI that applies to the granule at ``address``."""
        entry = self._l0_entry(address)
        if entry & L0_TYPE_MASK == L0_TYPE_TBL_DESC:
            desc = self.l1_tables[entry >> L0_TBL_DESC_SHIFT][self._l1_index(address)]
            return (desc >> (l1_gpi_index(self.p, address) << 2)) & GPI_MASK
        return (entry >> L0_BLK_DESC_GPI_SHIFT) & GPI_MASK