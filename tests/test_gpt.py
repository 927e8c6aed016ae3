import pytest

from ccasim.gpt import GranuleProtectionTable
from ccasim.gptdefs import (
    L0_TYPE_MASK,
    L0_TYPE_TBL_DESC,
    PAS_REGION_COUNT,
    SIZE_1GB,
    SIZE_4GB,
    SIZE_4KB,
    Gpi,
    GptError,
    MapType,
    PgsSize,
    build_l1_desc,
    l0_block_desc,
    region_base,
)


def default_table():
    gpt = GranuleProtectionTable()
    for i in range(PAS_REGION_COUNT):
        gpt.add_pas_region(region_base(i), SIZE_1GB, i)
    gpt.init_l0()
    return gpt


def test_init_l0_fills_any_blocks():
    gpt = default_table()
    assert len(gpt.l0) == SIZE_4GB // SIZE_1GB
    assert all(entry == 0xF1 for entry in gpt.l0)
    assert gpt.l0[0] == l0_block_desc(Gpi.ANY)


def test_default_l1_region_count():
    gpt = default_table()
    assert gpt.l1_region_count() == PAS_REGION_COUNT


def test_default_init_l1_assigns_world_gpis():
    gpt = default_table()
    count = gpt.init_l1()
    assert count == len(gpt.l1_tables)
    assert all(entry & L0_TYPE_MASK == L0_TYPE_TBL_DESC for entry in gpt.l0)
    assert gpt.granule_gpi(0) == Gpi.ROOT
    assert gpt.granule_gpi(SIZE_1GB) == Gpi.NS
    assert gpt.granule_gpi(2 * SIZE_1GB + SIZE_4KB) == Gpi.SECURE
    assert gpt.granule_gpi(SIZE_4GB - 1) == Gpi.REALM
    assert gpt.check_pas_gpi(0) == build_l1_desc(Gpi.ROOT)
    assert gpt.check_pas_gpi(SIZE_1GB + 12345) == build_l1_desc(Gpi.NS)


def test_region_slots_carry_granule_attr():
    gpt = GranuleProtectionTable()
    region = gpt.add_pas_region(0, SIZE_1GB, 3)
    assert region.map_type is MapType.GRANULE
    assert region.gpi == Gpi.REALM


def test_invalid_region_index():
    gpt = GranuleProtectionTable()
    with pytest.raises(GptError):
        gpt.add_pas_region(0, SIZE_1GB, PAS_REGION_COUNT)


def test_invalid_pps():
    with pytest.raises(GptError):
        GranuleProtectionTable(pps=9)


def test_count_requires_l0():
    gpt = GranuleProtectionTable()
    gpt.add_pas_region(0, SIZE_1GB, 0)
    with pytest.raises(GptError):
        gpt.l1_region_count()


def test_overlapping_regions_rejected():
    gpt = GranuleProtectionTable()
    gpt.add_pas_region(0, SIZE_1GB, 0)
    gpt.add_pas_region(SIZE_1GB // 2, SIZE_1GB, 1)
    gpt.init_l0()
    with pytest.raises(GptError):
        gpt.l1_region_count()


def test_region_beyond_pps_rejected():
    gpt = GranuleProtectionTable()
    gpt.add_pas_region(3 * SIZE_1GB, 2 * SIZE_1GB, 0)
    gpt.init_l0()
    with pytest.raises(GptError):
        gpt.init_l1()


def test_unaligned_granule_rejected():
    gpt = GranuleProtectionTable()
    gpt.add_pas_region(0x800, SIZE_4KB, 0)
    gpt.init_l0()
    with pytest.raises(GptError):
        gpt.l1_region_count()


def test_reinit_after_mapping_rejected():
    gpt = default_table()
    gpt.init_l1()
    with pytest.raises(GptError):
        gpt.l1_region_count()


def test_partial_region_leaves_neighbours_any():
    gpt = GranuleProtectionTable()
    base = 3 * SIZE_4KB
    gpt.add_pas_region(base, 2 * SIZE_4KB, 0)
    gpt.init_l0()
    gpt.init_l1()
    assert gpt.granule_gpi(base - SIZE_4KB) == Gpi.ANY
    assert gpt.granule_gpi(base) == Gpi.ROOT
    assert gpt.granule_gpi(base + SIZE_4KB) == Gpi.ROOT
    assert gpt.granule_gpi(base + 2 * SIZE_4KB) == Gpi.ANY
    assert gpt.granule_gpi(SIZE_1GB - SIZE_4KB) == Gpi.ANY


def test_regions_share_one_l1_table():
    gpt = GranuleProtectionTable()
    gpt.add_pas_region(0, 16 * SIZE_4KB, 0)
    gpt.add_pas_region(16 * SIZE_4KB, 16 * SIZE_4KB, 1)
    gpt.init_l0()
    count = gpt.l1_region_count()
    gpt.init_l1()
    assert count == len(gpt.l1_tables)
    assert gpt.check_pas_gpi(0) == build_l1_desc(Gpi.ROOT)
    assert gpt.check_pas_gpi(16 * SIZE_4KB) == build_l1_desc(Gpi.NS)
    assert gpt.granule_gpi(32 * SIZE_4KB) == Gpi.ANY


def test_block_mapped_region():
    gpt = GranuleProtectionTable()
    region = gpt.add_pas_region(0, SIZE_1GB, 1)
    region.attr = (MapType.BLOCK << 4) | Gpi.NS
    gpt.init_l0()
    count = gpt.init_l1()
    assert count == len(gpt.l1_tables)
    assert gpt.l1_tables == []
    assert gpt.l0[0] == l0_block_desc(Gpi.NS)
    assert gpt.granule_gpi(SIZE_4KB * 7) == Gpi.NS
    with pytest.raises(GptError):
        gpt.check_pas_gpi(0)


def test_block_region_must_be_aligned():
    gpt = GranuleProtectionTable()
    region = gpt.add_pas_region(0, SIZE_4KB, 0)
    region.attr = (MapType.BLOCK << 4) | Gpi.ROOT
    gpt.init_l0()
    with pytest.raises(GptError):
        gpt.l1_region_count()


def test_check_outside_space_rejected():
    gpt = default_table()
    gpt.init_l1()
    with pytest.raises(GptError):
        gpt.check_pas_gpi(SIZE_4GB)
    with pytest.raises(GptError):
        gpt.granule_gpi(-1)


def test_unmapped_l0_has_no_l1_table():
    gpt = GranuleProtectionTable()
    gpt.add_pas_region(0, SIZE_1GB, 0)
    gpt.init_l0()
    gpt.init_l1()
    assert gpt.granule_gpi(SIZE_1GB) == Gpi.ANY
    with pytest.raises(GptError):
        gpt.check_pas_gpi(SIZE_1GB)


def test_64k_granules():
    gpt = GranuleProtectionTable(pgs=PgsSize.PGS_64K)
    granule = gpt.granule_size
    gpt.add_pas_region(granule, granule, 2)
    gpt.init_l0()
    gpt.init_l1()
    assert gpt.granule_gpi(0) == Gpi.ANY
    assert gpt.granule_gpi(granule + SIZE_4KB) == Gpi.SECURE
    assert gpt.granule_gpi(2 * granule) == Gpi.ANY