from mpi4py import MPI


def border_predicate(values, biggest):
    """
    Local "sorted with left" predicate.

    True when the smallest local value is not below the left neighbour's
    largest value, i.e. no local element is strictly less than it.
    """
    return bool(values[0] >= biggest)


def publish_sorted(sorted_flags, full_publish=True, **kwargs):
    """
    Agree on the per-boundary sorted flags across all ranks.

    For every boundary `i` in `1..size-1`, rank `i` broadcasts its own
    flag `sorted_flags[i]` to everybody. Afterwards every rank holds the
    same copy of the published flags and the same `finished` value.

    Parameters
    ----------
    sorted_flags : np.ndarray
        One byte per rank. On entry only the caller's own entry needs to
        be valid; `sorted_flags[0]` is forced to true.
    full_publish : bool, optional
        Broadcast every flag even after a false one (default). When
        False the loop stops at the first false flag and the remaining
        entries are left unpublished.
    comm : MPI.Comm, optional
        Communicator to use (defaults to `MPI.COMM_WORLD`).

    Returns
    -------
    bool
        True iff every boundary is sorted.
    """
    comm = kwargs.get('comm', MPI.COMM_WORLD)
    size = comm.Get_size()

    sorted_flags[0] = 1
    finished = True
    for i in range(1, size):
        comm.Bcast(sorted_flags[i:i + 1], root=i)
        finished = finished and bool(sorted_flags[i])
        if not full_publish and not finished:
            break
    return finished
