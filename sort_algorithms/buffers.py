import numpy as np

# Native 32-bit signed integer, matches MPI.INT on the wire
VALUE_DTYPE = np.intc
FLAG_DTYPE = np.uint8


class BufferAllocationError(MemoryError):
    """Raised when one of the per-rank buffers cannot be allocated."""

    def __init__(self, rank, nbytes):
        self.rank = rank
        self.nbytes = nbytes
        super().__init__(f"P{rank}: Not enough memory to allocate array of length {nbytes}")


def slice_length(n, size, rank):
    """Number of elements owned by `rank`. The last rank also takes the remainder."""
    return n // size + (n % size if rank == size - 1 else 0)


def max_slice_length(n, size):
    """Length of the largest slice of any rank."""
    return n // size + n % size


def border_width(slice_len, divisor):
    """Number of elements exchanged with a neighbour, `slice_len // divisor`."""
    return slice_len // divisor


class SortBuffers:
    """
    Fixed backing store for one rank.

    Every buffer is allocated once, before the first round, at its worst
    case size, and is reused by every send, receive and merge until
    `release()`.

    Attributes
    ----------
    values : np.ndarray
        The rank's slice, `slice_len` elements.
    sorted : np.ndarray
        Agreement bitmap, one byte per rank.
    combined : np.ndarray
        Merge scratch, `max_slice` elements.
    right_val : np.ndarray
        Receive scratch for the right neighbour's border, `max_slice // divisor` elements.
    """

    def __init__(self):
        self.values = None
        self.sorted = None
        self.combined = None
        self.right_val = None

    @classmethod
    def allocate(cls, rank, size, slice_len, max_slice, divisor):
        """
        Allocate all buffers for one rank.

        Parameters
        ----------
        rank : int
            Rank the buffers belong to, used in the diagnostic.
        size : int
            Number of ranks.
        slice_len : int
            Length of this rank's slice.
        max_slice : int
            Length of the largest slice of any rank.
        divisor : int
            Border divisor.

        Returns
        -------
        SortBuffers

        Raises
        ------
        BufferAllocationError
            If any allocation fails. Buffers allocated before the failure
            are released first.
        """
        buffers = cls()
        plan = [
            ("values", slice_len, VALUE_DTYPE),
            ("sorted", size, FLAG_DTYPE),
            ("combined", max_slice, VALUE_DTYPE),
            ("right_val", max_slice // divisor, VALUE_DTYPE),
        ]
        for name, length, dtype in plan:
            try:
                setattr(buffers, name, np.empty(length, dtype=dtype))
            except MemoryError:
                buffers.release()
                raise BufferAllocationError(rank, length * np.dtype(dtype).itemsize) from None
        return buffers

    def release(self):
        self.values = None
        self.sorted = None
        self.combined = None
        self.right_val = None

    @property
    def allocated(self):
        return all(buf is not None for buf in (self.values, self.sorted, self.combined, self.right_val))
