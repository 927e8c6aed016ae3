import pytest

from ccasim.trustzone import (
    SECURE_BASE,
    VIOLATION_VALUE,
    TrustZone,
    TzWorld,
    main,
)

BLOCK = 4096


@pytest.fixture
def tz():
    with TrustZone(block_size=BLOCK, normal_blocks=2, secure_blocks=2) as zone:
        yield zone


def test_normal_world_round_trip(tz):
    assert tz.write(100, 0xAB) is True
    assert tz.read(100) == 0xAB


def test_normal_world_cannot_touch_secure_memory(tz):
    addr = SECURE_BASE + 10
    assert tz.check_access(addr) is False
    assert tz.write(addr, 0xCD) is False
    assert tz.read(addr) == VIOLATION_VALUE


def test_secure_world_accesses_both(tz):
    tz.switch_world(TzWorld.SECURE)
    assert tz.write(SECURE_BASE + 1, 0xEF)
    assert tz.read(SECURE_BASE + 1) == 0xEF
    assert tz.write(5, 0x99)
    assert tz.read(5) == 0x99


def test_secure_data_hidden_after_returning_to_normal(tz):
    tz.switch_world(TzWorld.SECURE)
    tz.write(SECURE_BASE + BLOCK + 3, 0x42)
    tz.switch_world(TzWorld.NORMAL)
    assert tz.read(SECURE_BASE + BLOCK + 3) == VIOLATION_VALUE
    tz.switch_world(TzWorld.SECURE)
    assert tz.read(SECURE_BASE + BLOCK + 3) == 0x42


def test_unmapped_address(tz):
    addr = 3 * BLOCK
    assert tz.translate(addr) is None
    assert tz.check_access(addr) is False
    assert tz.read(addr) == VIOLATION_VALUE
    assert tz.write(addr, 1) is False


def test_translate_returns_block_and_offset(tz):
    block, offset = tz.translate(BLOCK + 5)
    assert block.virtual_base == BLOCK
    assert offset == 5
    assert block.is_secure is False


def test_secure_block_layout(tz):
    bases = [b.virtual_base for b in tz.blocks if b.is_secure]
    assert bases == [SECURE_BASE, SECURE_BASE + BLOCK]


def test_switch_world_accepts_value(tz):
    tz.switch_world("secure")
    assert tz.world is TzWorld.SECURE


def test_random_access_stats_are_consistent(tz):
    stats = tz.random_access_test(2000, seed=7)
    assert stats.valid == stats.secure + stats.normal
    assert stats.valid + stats.invalid == 2000
    assert stats.valid_percent + stats.invalid_percent == pytest.approx(100.0)


def test_random_access_is_deterministic_with_seed(tz):
    first = tz.random_access_test(500, seed=3)
    second = tz.random_access_test(500, seed=3)
    assert first.valid + first.invalid == 500
    assert (first.valid, first.secure, first.normal, first.invalid) == (
        second.valid,
        second.secure,
        second.normal,
        second.invalid,
    )


def test_invalid_layouts_rejected():
    with pytest.raises(ValueError):
        TrustZone(block_size=0)
    with pytest.raises(ValueError):
        TrustZone(block_size=0x40000000, normal_blocks=3, secure_blocks=0)
    with pytest.raises(ValueError):
        TrustZone(block_size=0x40000000, normal_blocks=0, secure_blocks=3)


def test_close_releases_blocks():
    zone = TrustZone(block_size=BLOCK, normal_blocks=1, secure_blocks=1)
    zone.close()
    assert zone.blocks == []


def test_main_demo(capsys):
    assert main(["--block-size", str(BLOCK), "-n", "50", "--seed", "1"]) == 0
    out = capsys.readouterr().out
    assert "0xAB" in out
    assert "0xEF" in out
    assert "Read previously written normal memory (0x00000000): 0x99" in out