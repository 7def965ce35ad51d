import time

import numpy as np
from mpi4py import MPI


def rank_print(rank, message):
    """Print one line prefixed with the rank, flushed immediately."""
    print(f"P{rank}: {message}", flush=True)


def benchmark_algorithm(algorithm, *args, **kwargs):
    """
    Run an algorithm between two barriers and time it.

    Parameters
    ----------
    algorithm : callable
        Function to benchmark, called as `algorithm(*args, **kwargs)`.
    comm : MPI.Comm, optional
        Communicator to synchronise on (defaults to `MPI.COMM_WORLD`);
        it is also forwarded to `algorithm`.

    Returns
    -------
    total_time : float
        Wall-clock time in seconds, measured with `MPI.Wtime`.
    result : any
        What `algorithm` returned on this rank.
    """
    comm = kwargs.setdefault('comm', MPI.COMM_WORLD)
    comm.Barrier()
    start_time = MPI.Wtime()
    result = algorithm(*args, **kwargs)
    comm.Barrier()
    end_time = MPI.Wtime()
    return end_time - start_time, result


def globally_sorted(comm, data, original_data):
    """
    Check a distributed sort on the root rank.

    Gathers both the sorted slices and the original slices on rank 0
    and verifies that the concatenation of the sorted slices is
    non-decreasing and holds the same multiset as the original input.

    Returns
    -------
    bool or None
        The verdict on rank 0, None on every other rank.
    """
    global_data = comm.gather(np.asarray(data), root=0)
    global_original = comm.gather(np.asarray(original_data), root=0)
    if comm.Get_rank() != 0:
        return None

    global_data = np.concatenate(global_data)
    global_original = np.sort(np.concatenate(global_original))
    ordered = bool(np.all(global_data[:-1] <= global_data[1:]))
    return ordered and np.array_equal(global_data, global_original)


def print_slices_in_rank_order(comm, values, pause=1e-4):
    """
    Print every rank's slice, rank 0 first, one rank at a time.

    Ranks take turns between barriers; the short pause gives the
    launcher time to forward each rank's output before the next one
    prints.
    """
    rank = comm.Get_rank()
    for i in range(comm.Get_size()):
        if i == rank:
            print(" ".join(str(v) for v in values), end=" ", flush=True)
        comm.Barrier()
        time.sleep(pause)
    if rank == 0:
        print(flush=True)
