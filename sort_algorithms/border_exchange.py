import numpy as np
from mpi4py import MPI

from sort_algorithms.buffers import (
    VALUE_DTYPE,
    SortBuffers,
    border_width,
    max_slice_length,
    slice_length,
)
from sort_algorithms.local_sort import merge_k, sort_full
from sort_algorithms.termination import border_predicate, publish_sorted

# Single logical channel between neighbours; FIFO order keeps the phases apart
TAG = 0


class ExchangeError(RuntimeError):
    """A neighbour delivered a message of unexpected length."""


class RankState:
    """
    Everything one rank keeps between rounds.

    Holding this in an explicit record (instead of module globals) lets
    several logical ranks share one interpreter, each with its own
    communicator.

    Parameters
    ----------
    comm : MPI.Comm
        Communicator spanning the pipeline.
    n : int
        Global number of elements.
    divisor : int, optional
        Border divisor `D`, border width is `slice_len // divisor`.
    use_merge : bool, optional
        After the first round, merge the three ordered runs instead of
        sorting the whole slice again.
    full_converge : bool, optional
        Publish every boundary flag and skip exchanges on boundaries
        that are already sorted.
    debug : bool, optional
        Print per-phase traces and synchronise between phases.
    """

    def __init__(self, comm, n, divisor=2, use_merge=True, full_converge=True, debug=False):
        self.comm = comm
        self.rank = comm.Get_rank()
        self.size = comm.Get_size()
        self.n = n
        self.divisor = divisor
        self.use_merge = use_merge
        self.full_converge = full_converge
        self.debug = debug

        self.slice_len = slice_length(n, self.size, self.rank)
        self.max_slice = max_slice_length(n, self.size)
        self.border = border_width(self.slice_len, divisor)
        # Every slice but the last has length N // P; with a zero border there
        # no boundary can move values
        self.can_move = border_width(slice_length(n, self.size, 0), divisor) > 0

        self.first_sort = True
        # Length of the right neighbour's border shipment, probed once
        self.mpi_count = None
        self.buffers = None
        self.messages = {"advertise": 0, "ship": 0, "return": 0}
        self._biggest = np.empty(1, dtype=VALUE_DTYPE)

    def allocate(self):
        self.buffers = SortBuffers.allocate(
            self.rank, self.size, self.slice_len, self.max_slice, self.divisor
        )

    def release(self):
        if self.buffers is not None:
            self.buffers.release()
        self.buffers = None

    @property
    def values(self):
        return self.buffers.values

    @property
    def sorted_flags(self):
        return self.buffers.sorted

    @property
    def is_first(self):
        return self.rank == 0

    @property
    def is_last(self):
        return self.rank == self.size - 1

    def trace(self, message):
        if self.debug:
            print(f"P{self.rank}: {message}", flush=True)

    def sync(self):
        # Debug only: keep the traces of one phase together
        if self.debug:
            self.comm.Barrier()


def format_values(values):
    return " ".join(str(v) for v in values)


def _recv_exact(state, buf, source):
    status = MPI.Status()
    state.comm.Recv(buf, source=source, tag=TAG, status=status)
    count = status.Get_count(MPI.INT)
    if count != len(buf):
        raise ExchangeError(
            f"P{state.rank}: expected {len(buf)} values from P{source}, received {count}"
        )


# --- Phase A ---

def local_reorder(state):
    """
    Restore local order of the slice.

    The first call sorts the whole slice. Later calls merge the three
    ordered runs left by the previous round: the block received from
    the left, the untouched middle and the block kept from the right
    exchange.
    """
    values = state.values
    S, B = state.slice_len, state.border

    if state.first_sort or not state.use_merge:
        sort_full(values, S)
        state.first_sort = False
    else:
        runs = (values[:B], values[B:S - B], values[S - B:])
        merged = merge_k(runs, state.buffers.combined, S)
        values[:] = merged

    state.trace(f"sorted local array -> {format_values(values)}")
    state.sync()


# --- Phase B ---

def advertise_right_border(state):
    """Send the largest local value to the right neighbour."""
    if state.is_last:
        return
    S = state.slice_len
    state.trace(f"Sending value {state.values[S - 1]} to right")
    state.comm.Send(state.values[S - 1:S], dest=state.rank + 1, tag=TAG)
    state.messages["advertise"] += 1


# --- Phase C ---

def receive_left_border(state):
    """
    Receive the left neighbour's largest value and evaluate the border predicate.

    Returns
    -------
    bool
        The local predicate, also stored in `state.sorted_flags[rank]`.
        Always True on rank 0.
    """
    flags = state.sorted_flags
    flags[state.rank] = 1
    if state.is_first:
        return True

    _recv_exact(state, state._biggest, source=state.rank - 1)
    biggest = state._biggest[0]
    local_sorted = border_predicate(state.values, biggest)
    flags[state.rank] = local_sorted
    state.trace(f"{state.values[0]} >= {biggest} = {int(local_sorted)}")
    return local_sorted


# --- Phase D ---

def agree(state):
    """Publish the boundary flags; True when every boundary is sorted."""
    finished = publish_sorted(state.sorted_flags, state.full_converge, comm=state.comm)
    state.sync()
    return finished


def needs_left_exchange(state):
    if state.is_first:
        return False
    return not state.full_converge or not state.sorted_flags[state.rank]


def needs_right_exchange(state):
    if state.is_last:
        return False
    return not state.full_converge or not state.sorted_flags[state.rank + 1]


# --- Phase E ---

def ship_left_border(state):
    """Send the `B` smallest local values to the left neighbour."""
    state.comm.Send(state.values[:state.border], dest=state.rank - 1, tag=TAG)
    state.messages["ship"] += 1
    state.trace("Sending values to left")


def merge_right_border(state):
    """
    Merge the right neighbour's border into the local tail.

    The lower half of the merged union replaces the local tail, the
    upper half goes back to the right neighbour.
    """
    comm = state.comm
    right = state.rank + 1
    S, B = state.slice_len, state.border

    if state.mpi_count is None:
        status = MPI.Status()
        comm.Probe(source=right, tag=TAG, status=status)
        state.mpi_count = status.Get_count(MPI.INT)
        if state.mpi_count > len(state.buffers.right_val):
            raise ExchangeError(
                f"P{state.rank}: border of {state.mpi_count} values from P{right} "
                f"exceeds buffer of {len(state.buffers.right_val)}"
            )
    count = state.mpi_count

    right_val = state.buffers.right_val[:count]
    _recv_exact(state, right_val, source=right)

    tail = state.values[S - B:]
    merged = merge_k((tail, right_val), state.buffers.combined, B + count)
    tail[:] = merged[:B]
    state.trace(f"Combined array (sent) -> {format_values(state.values)}")

    comm.Send(merged[B:], dest=right, tag=TAG)
    state.messages["return"] += 1


# --- Phase F ---

def reintegrate_left_border(state):
    """Overwrite the local head with the values returned by the left neighbour."""
    _recv_exact(state, state.values[:state.border], source=state.rank - 1)
    state.trace(f"Combined array (received) -> {format_values(state.values)}")


def exchange_round(state):
    """
    Run one round of the protocol (phases A to F).

    Returns
    -------
    bool
        True when every boundary was found sorted; phases E and F are
        skipped in that case.
    """
    local_reorder(state)

    if state.size == 1:
        return True

    advertise_right_border(state)
    receive_left_border(state)
    state.sync()
    if agree(state):
        return True

    left = needs_left_exchange(state)
    if left:
        ship_left_border(state)

    if needs_right_exchange(state):
        merge_right_border(state)

    if left:
        reintegrate_left_border(state)
    state.sync()
    return False
