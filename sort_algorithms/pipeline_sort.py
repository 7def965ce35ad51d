from collections import namedtuple

import numpy as np
from mpi4py import MPI

from sort_algorithms.border_exchange import RankState, exchange_round

DEFAULT_N = 1000000
DEBUG_N = 40
DEFAULT_DIVISOR = 2

# n=None picks DEFAULT_N, or DEBUG_N in debug mode
SortConfig = namedtuple(
    "SortConfig",
    ["n", "divisor", "use_merge", "full_converge", "debug", "max_rounds"],
    defaults=[None, DEFAULT_DIVISOR, True, True, False, None],
)

SortResult = namedtuple("SortResult", ["values", "rounds", "elapsed", "messages"])


class ConvergenceError(RuntimeError):
    """The pipeline cannot reach, or did not reach in time, a sorted state."""


def resolve_length(config):
    if config.n is not None:
        return config.n
    return DEBUG_N if config.debug else DEFAULT_N


def validate_parameters(n, size, divisor):
    """
    Reject parameter sets the protocol is not defined for.

    Raises
    ------
    ValueError
        If `size < 1`, `n < size` or `divisor < 2`.
    """
    if size < 1:
        raise ValueError(f"Need at least one process, got {size}")
    if n < size:
        raise ValueError(f"Need at least one element per process: N={n} < P={size}")
    if divisor < 2:
        raise ValueError(f"Border divisor must be at least 2, got {divisor}")


def make_worst_case_slice(out, n, rank, size):
    """
    Fill `out` with this rank's part of a strictly decreasing global sequence.

    `out[i] = n - (n // size) * rank - i`, so the whole array starts in
    reverse order.
    """
    start = n - (n // size) * rank
    out[:] = np.arange(start, start - len(out), -1)
    return out


def make_random_slice(out, n, rank, size, seed=0):
    """Fill `out` with uniformly random 32-bit integers, one generator per rank."""
    gen = np.random.Generator(np.random.MT19937(seed + rank))
    info = np.iinfo(out.dtype)
    out[:] = gen.integers(info.min, info.max, size=len(out), dtype=out.dtype, endpoint=True)
    return out


def pipeline_sort(config=SortConfig(), loader=None, on_round=None, **kwargs):
    """
    Sort a distributed array by repeated neighbour border exchange.

    Each rank owns one contiguous slice of the global array. Every round
    restores local order, checks every boundary against its left
    neighbour and, if some boundary is out of order, merges borders with
    the neighbours. The loop ends once every boundary is sorted; the
    concatenation of the slices in rank order is then non-decreasing.

    Parameters
    ----------
    config : SortConfig, optional
        Global parameters; must be identical on every rank.
    loader : callable, optional
        `loader(out, n, rank, size)` fills this rank's slice buffer.
        Defaults to `make_worst_case_slice`.
    on_round : callable, optional
        `on_round(state, round_index)` is called after every round,
        with the live `RankState`.
    comm : MPI.Comm, optional
        Custom MPI communicator (defaults to `MPI.COMM_WORLD`).

    Returns
    -------
    SortResult
        The sorted local slice (a copy), the number of rounds including
        the final check, the elapsed wall time of the round loop and the
        per-kind count of messages this rank sent.

    Raises
    ------
    ValueError
        On invalid parameters, before any buffer is allocated.
    BufferAllocationError
        If the rank's buffers cannot be allocated.
    ConvergenceError
        If `config.max_rounds` rounds pass without convergence, or if a
        boundary is unsorted while the border width of `N // P` is 0.
    """
    comm = kwargs.get('comm', MPI.COMM_WORLD)
    rank = comm.Get_rank()
    size = comm.Get_size()

    n = resolve_length(config)
    validate_parameters(n, size, config.divisor)
    if loader is None:
        loader = make_worst_case_slice

    state = RankState(
        comm, n,
        divisor=config.divisor,
        use_merge=config.use_merge,
        full_converge=config.full_converge,
        debug=config.debug,
    )
    state.allocate()
    try:
        loader(state.values, n, rank, size)
        state.trace(f"Array is -> {' '.join(str(v) for v in state.values)}")

        then = MPI.Wtime()
        rounds = 0
        finished = False
        while not finished:
            # Same round count on every rank, so all of them stop together
            if config.max_rounds is not None and rounds >= config.max_rounds:
                raise ConvergenceError(f"P{rank}: not sorted after {rounds} rounds")
            finished = exchange_round(state)
            rounds += 1
            if on_round is not None:
                on_round(state, rounds)
            # Flags are identical on every rank, so all ranks raise together
            if not finished and not state.can_move:
                raise ConvergenceError(
                    f"P{rank}: unsorted boundary with slices shorter than the divisor "
                    f"(N={n}, P={size}, D={config.divisor}), no value can cross it"
                )
        elapsed = MPI.Wtime() - then

        result = SortResult(state.values.copy(), rounds, elapsed, dict(state.messages))
    finally:
        state.release()
    return result
