import pytest

from ccasim.memory import MemoryManager, WorldMemoryError


@pytest.fixture
def manager():
    return MemoryManager(4)


def test_allocate_returns_buffer_of_size(manager):
    memory = manager.allocate(0, 4096)
    assert len(memory) == 4096
    memory[0] = 0xAB
    assert memory[0] == 0xAB


def test_pointer_and_size_track_allocation(manager):
    memory = manager.allocate(0, 4096)
    assert manager.pointer(0) is memory
    assert manager.size(0) == 4096
    assert manager.pointer_by_id(0) is memory


def test_allocation_goes_to_first_free_slot(manager):
    memory = manager.allocate(3, 1024)
    assert manager.pointer(0) is memory
    assert manager.pointer(3) is None
    assert manager.size(3) == 0


def test_free_clears_slot(manager):
    memory = manager.allocate(1, 2048)
    manager.free(1, memory)
    assert manager.pointer(0) is None
    assert manager.size(0) == 0


def test_free_unknown_memory_raises(manager):
    manager.allocate(0, 16)
    with pytest.raises(WorldMemoryError):
        manager.free(0, bytearray(16))


def test_free_with_none_raises(manager):
    with pytest.raises(WorldMemoryError):
        manager.free(0, None)
    with pytest.raises(WorldMemoryError):
        manager.free(None, bytearray(1))


def test_invalid_world_raises(manager):
    with pytest.raises(WorldMemoryError):
        manager.allocate(None, 16)
    with pytest.raises(WorldMemoryError):
        manager.pointer(None)


def test_full_table_still_returns_memory_untracked(manager):
    tracked = [manager.allocate(i, 8) for i in range(4)]
    extra = manager.allocate(0, 8)
    assert len(extra) == 8
    assert [manager.pointer_by_id(i) for i in range(4)] == tracked
    assert all(manager.pointer_by_id(i) is not extra for i in range(4))


def test_reset_forgets_allocations(manager):
    manager.allocate(0, 32)
    manager.reset()
    assert manager.pointer(0) is None
    assert manager.size(0) == 0


def test_negative_size_raises(manager):
    with pytest.raises(WorldMemoryError):
        manager.allocate(0, -1)


def test_zero_size_allocation(manager):
    memory = manager.allocate(2, 0)
    assert len(memory) == 0
    assert manager.pointer(0) is memory