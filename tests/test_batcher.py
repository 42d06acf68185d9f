import pytest

from demoseed.batcher import Batcher


def test_signals_full_batch_and_preserves_order():
    b = Batcher(3)
    assert b.accept("a") is False
    assert b.accept("b") is False
    assert b.accept("c") is True
    assert b.flush() == ["a", "b", "c"]
    assert len(b) == 0


def test_final_partial_batch():
    b = Batcher(400)
    for i in range(5):
        b.accept(str(i))
    assert b.flush() == ["0", "1", "2", "3", "4"]
    assert b.flush() == []


def test_batch_count_is_ceiling():
    b = Batcher(7)
    batches = []
    for i in range(50):
        if b.accept(i):
            batches.append(b.flush())
    rest = b.flush()
    if rest:
        batches.append(rest)
    assert len(batches) == 8
    assert [x for batch in batches for x in batch] == list(range(50))


def test_invalid_size():
    with pytest.raises(ValueError):
        Batcher(0)
