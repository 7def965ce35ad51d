import numpy as np


def sort_full(a, n):
    """
    Sort the first `n` elements of `a` in place, ascending.

    Used once per rank, on the very first round, when the slice is in
    arbitrary order.

    Parameters
    ----------
    a : np.ndarray
        1D integer array holding the slice.
    n : int
        Number of leading elements to sort.

    Returns
    -------
    np.ndarray
        The same array `a`.
    """
    if n < 0 or n > len(a):
        raise ValueError(f"Cannot sort {n} elements of an array of length {len(a)}")
    a[:n].sort(kind="stable")
    return a


def merge_k(runs, dst, n):
    """
    Merge already ordered runs into `dst[0:n]`.

    The runs are laid end to end into `dst` and the result is ordered
    with a stable sort, which for pre-ordered input reduces to merging
    the runs. Equal keys keep the order of the runs as given, so ties
    go to the run declared first.

    Parameters
    ----------
    runs : sequence of np.ndarray
        Non-decreasing 1D runs. Empty runs are allowed.
    dst : np.ndarray
        Destination buffer, at least `n` elements long. Must not share
        memory with any run.
    n : int
        Total number of elements, equal to the sum of the run lengths.

    Returns
    -------
    np.ndarray
        The view `dst[:n]` holding the merged values.
    """
    if len(runs) == 0:
        raise ValueError("merge_k needs at least one run")
    total = sum(len(run) for run in runs)
    if total != n:
        raise ValueError(f"Run lengths add up to {total}, expected {n}")
    if n > len(dst):
        raise ValueError(f"Destination holds {len(dst)} elements, {n} needed")

    out = dst[:n]
    for run in runs:
        if len(run) and np.shares_memory(run, out):
            raise ValueError("merge_k runs must not overlap the destination")
    if n == 0:
        return out

    np.concatenate(runs, out=out)
    out.sort(kind="stable")
    return out


def is_sorted(a):
    """Return True if `a` is non-decreasing."""
    a = np.asarray(a)
    return bool(np.all(a[:-1] <= a[1:])) if a.size > 1 else True
