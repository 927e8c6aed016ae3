"""Granule Protection Table definitions: constants, enums and descriptor helpers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class GptError(Exception):
    """Raised when a GPT parameter, region or table operation is invalid."""


class Gpi(IntEnum):
    """Granule Protection Information values."""

    NO_ACCESS = 0x0
    SECURE = 0x8
    NS = 0x9
    ROOT = 0xA
    REALM = 0xB
    ANY = 0xF


class PpsSize(IntEnum):
    """Protected Physical Address Size encodings."""

    PPS_4GB = 0x0
    PPS_64GB = 0x1
    PPS_1TB = 0x2
    PPS_4TB = 0x3
    PPS_16TB = 0x4
    PPS_256TB = 0x5
    PPS_4PB = 0x6


class PgsSize(IntEnum):
    """Physical Granule Size encodings."""

    PGS_4K = 0x0
    PGS_64K = 0x1
    PGS_16K = 0x2


class MapType(IntEnum):
    """How a PAS region is mapped: by L0 block or by L1 granules."""

    BLOCK = 0x0
    GRANULE = 0x1


PAS_REGION_COUNT = 4

SIZE_4KB = 0x1000
SIZE_16KB = 4 * SIZE_4KB
SIZE_1GB = 0x40000000
SIZE_4GB = 0x100000000
PPS_REGION_BASE = 0x100000000
SZ_2M = 0x00200000
ULONG_MAX = 0xFFFFFFFFFFFFFFFF
L1_GPT_MAX_NUM = 0xFFFFFF

GPI_MASK = 0xF

L0_TYPE_TBL_DESC = 3
L0_TYPE_BLK_DESC = 1
L0_TYPE_MASK = 0xF
L0_BLK_DESC_GPI_SHIFT = 4
L0_TBL_DESC_SHIFT = 4

L0GPTSZ = 0
S_VAL = L0GPTSZ + 30
L0_IDX_SHIFT = S_VAL
L0_REGION_SIZE = 1 << L0_IDX_SHIFT

PAS_ATTR_MAP_TYPE_SHIFT = 4
PAS_ATTR_MAP_TYPE_MASK = 0x1

L1_GPI_IDX_MASK = 0xF

# GPI assigned to each PAS region slot when regions are registered in order.
REGION_GPIS = (Gpi.ROOT, Gpi.NS, Gpi.SECURE, Gpi.REALM)

_T_LOOKUP = (32, 36, 40, 42, 44, 48, 52)
_P_LOOKUP = {PgsSize.PGS_4K: 12, PgsSize.PGS_64K: 16, PgsSize.PGS_16K: 14}


@dataclass
class PasRegion:
    """A physical address space region with its attribute byte."""

    base: int
    size: int
    attr: int = 0

    @property
    def end(self) -> int:
        return self.base + self.size

    @property
    def gpi(self) -> int:
        return self.attr & GPI_MASK

    @property
    def map_type(self) -> MapType:
        return MapType((self.attr >> PAS_ATTR_MAP_TYPE_SHIFT) & PAS_ATTR_MAP_TYPE_MASK)


def validate_pps(pps: int) -> PpsSize:
    """Return ``pps`` as a PpsSize, raising GptError if it is out of range."""
    try:
        return PpsSize(pps)
    except ValueError:
        raise GptError(f"Illegal PPS value: {pps}") from None


def pps_t(pps: int) -> int:
    """Return the T value (address width) for a PPS encoding."""
    return _T_LOOKUP[validate_pps(pps)]


def pgs_p(pgs: int) -> int:
    """Return the P value (granule shift) for a PGS encoding."""
    try:
        return _P_LOOKUP[PgsSize(pgs)]
    except ValueError:
        raise GptError(f"Illegal PGS value: {pgs}") from None


def l0_index(address: int) -> int:
    """Index of the L0 entry covering ``address``."""
    return address >> L0_IDX_SHIFT


def l0_block_desc(gpi: int) -> int:
    """Build an L0 block descriptor carrying ``gpi``."""
    return L0_TYPE_BLK_DESC | ((gpi & GPI_MASK) << L0_BLK_DESC_GPI_SHIFT)


def l0_table_desc(table_index: int) -> int:
    """Build an L0 table descriptor pointing at L1 table ``table_index``."""
    return L0_TYPE_TBL_DESC | (table_index << L0_TBL_DESC_SHIFT)


def build_l1_desc(gpi: int) -> int:
    """Build an L1 descriptor with all sixteen GPI fields set to ``gpi``."""
    desc = gpi | (gpi << 4)
    desc |= desc << 8
    desc |= desc << 16
    return (desc | (desc << 32)) & ULONG_MAX


def l1_index_mask(p: int) -> int:
    """Mask for the L1 index field for granule shift ``p``."""
    width = (S_VAL - 1) - (p + 3)
    return 0x7FFFFF >> (23 - width)


def l1_entry_count(p: int) -> int:
    """Number of 64-bit entries in one L1 table for granule shift ``p``."""
    return l1_index_mask(p) + 1


def l1_gpi_index(p: int, address: int) -> int:
    """Position of ``address``'s GPI within its L1 entry."""
    return (address >> p) & L1_GPI_IDX_MASK


def region_base(index: int) -> int:
    """Base address of the ``index``-th 1GB PAS region."""
    return index * SIZE_1GB