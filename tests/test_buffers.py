import numpy as np
import pytest
from sort_algorithms import buffers
from sort_algorithms.buffers import (
    BufferAllocationError,
    SortBuffers,
    border_width,
    max_slice_length,
    slice_length,
)


def test_slice_lengths_last_rank_takes_remainder():
    assert [slice_length(10, 4, r) for r in range(4)] == [2, 2, 2, 4]
    assert [slice_length(9, 3, r) for r in range(3)] == [3, 3, 3]
    assert slice_length(5, 1, 0) == 5
    assert max_slice_length(10, 4) == 4
    assert max_slice_length(9, 3) == 3


def test_border_width_uses_integer_division():
    assert border_width(4, 2) == 2
    assert border_width(5, 2) == 2
    assert border_width(5, 3) == 1
    assert border_width(1, 2) == 0


def test_allocate_sizes_and_types():
    bufs = SortBuffers.allocate(rank=3, size=4, slice_len=4, max_slice=4, divisor=2)
    assert bufs.allocated
    assert bufs.values.shape == (4,) and bufs.values.dtype == np.intc
    assert bufs.sorted.shape == (4,) and bufs.sorted.dtype == np.uint8
    assert bufs.combined.shape == (4,)
    assert bufs.right_val.shape == (2,)

    bufs.release()
    assert not bufs.allocated
    assert bufs.values is None and bufs.combined is None


def test_combined_fits_border_merge_with_larger_neighbour():
    # Rank 2 of (N=10, P=4) merges its border of 1 with rank 3's border of 2
    n, size, divisor = 10, 4, 2
    bufs = SortBuffers.allocate(2, size, slice_length(n, size, 2), max_slice_length(n, size), divisor)
    own = border_width(slice_length(n, size, 2), divisor)
    peer = border_width(slice_length(n, size, 3), divisor)
    assert own + peer <= len(bufs.combined)
    assert peer <= len(bufs.right_val)


def test_allocation_failure_releases_and_reports(monkeypatch):
    real_empty = np.empty
    calls = []

    def failing_empty(length, dtype=float):
        calls.append(length)
        if len(calls) == 3:
            raise MemoryError()
        return real_empty(length, dtype=dtype)

    released = []
    real_release = SortBuffers.release

    def spy_release(self):
        released.append(self)
        real_release(self)

    monkeypatch.setattr(buffers.np, "empty", failing_empty)
    monkeypatch.setattr(SortBuffers, "release", spy_release)

    with pytest.raises(BufferAllocationError) as excinfo:
        SortBuffers.allocate(rank=1, size=2, slice_len=5, max_slice=6, divisor=2)

    err = excinfo.value
    assert isinstance(err, MemoryError)
    assert err.rank == 1
    # Third buffer is `combined`: 6 ints of 4 bytes
    assert err.nbytes == 6 * np.dtype(np.intc).itemsize
    assert str(err) == f"P1: Not enough memory to allocate array of length {err.nbytes}"
    assert len(released) == 1
    assert released[0].values is None and released[0].sorted is None
