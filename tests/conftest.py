import copy
import threading
from collections import deque

import numpy as np
import pytest
from mpi4py import MPI
from mpi4py.util.dtlib import from_numpy_dtype


@pytest.fixture
def mpi_env():
    """Fixture to provide MPI environment."""
    comm = MPI.COMM_WORLD
    rank = comm.Get_rank()
    size = comm.Get_size()
    return comm, rank, size


class _Envelope:
    def __init__(self, data):
        self.data = data
        self.delivered = threading.Event()


class LoopbackHub:
    """
    In-process message switch for a group of `LoopbackComm` ranks.

    Each ordered (source, destination, channel) triple is a FIFO queue.
    With `synchronous=True` a send only returns once the matching
    receive has taken the message, like `MPI_Ssend`.
    """

    def __init__(self, size, synchronous=False, timeout=5.0):
        self.size = size
        self.synchronous = synchronous
        self.timeout = timeout
        self.cond = threading.Condition()
        self.queues = {}
        self.barrier = threading.Barrier(size, timeout=timeout)
        self.sent = []

    def put(self, src, dst, channel, data):
        if not 0 <= dst < self.size:
            raise ValueError(f"invalid destination rank {dst}")
        item = _Envelope(data)
        with self.cond:
            self.queues.setdefault((src, dst, channel), deque()).append(item)
            self.sent.append((src, dst, channel, data))
            self.cond.notify_all()
        if self.synchronous and not item.delivered.wait(self.timeout):
            raise TimeoutError(f"send {src}->{dst} on {channel} was never received")

    def _head(self, key):
        if not self.cond.wait_for(lambda: self.queues.get(key), timeout=self.timeout):
            raise TimeoutError(f"nothing arrived on {key}")
        return self.queues[key][0]

    def peek(self, src, dst, channel):
        with self.cond:
            return self._head((src, dst, channel)).data

    def take(self, src, dst, channel):
        key = (src, dst, channel)
        with self.cond:
            item = self._head(key)
            self.queues[key].popleft()
        item.delivered.set()
        return item.data


class LoopbackComm:
    """Subset of the `MPI.Comm` interface used by the sort, backed by a `LoopbackHub`."""

    def __init__(self, hub, rank):
        self.hub = hub
        self.rank = rank
        self.size = hub.size

    def Get_rank(self):
        return self.rank

    def Get_size(self):
        return self.size

    def Send(self, buf, dest, tag=0):
        self.hub.put(self.rank, dest, ("p2p", tag), np.array(buf, copy=True))

    def Recv(self, buf, source, tag=0, status=None):
        data = self.hub.take(source, self.rank, ("p2p", tag))
        if len(data) > len(buf):
            raise RuntimeError(f"message of {len(data)} truncated to {len(buf)}")
        buf[:len(data)] = data
        if status is not None:
            status.Set_elements(from_numpy_dtype(data.dtype), len(data))

    def Probe(self, source, tag=0, status=None):
        data = self.hub.peek(source, self.rank, ("p2p", tag))
        if status is not None:
            status.Set_elements(from_numpy_dtype(data.dtype), len(data))

    def Bcast(self, buf, root=0):
        if self.rank == root:
            for dst in range(self.size):
                if dst != root:
                    self.hub.put(root, dst, ("bcast",), np.array(buf, copy=True))
        else:
            buf[:] = self.hub.take(root, self.rank, ("bcast",))

    def Barrier(self):
        self.hub.barrier.wait()

    def gather(self, obj, root=0):
        if self.rank != root:
            self.hub.put(self.rank, root, ("gather",), copy.deepcopy(obj))
            return None
        return [obj if src == root else self.hub.take(src, root, ("gather",))
                for src in range(self.size)]


def run_on_loopback(size, target, synchronous=False, timeout=5.0, hub=None):
    """
    Run `target(comm)` on `size` threads, one loopback rank each.

    Pass your own `hub` to inspect the traffic afterwards.

    Returns
    -------
    list
        The per-rank return values, in rank order.
    """
    if hub is None:
        hub = LoopbackHub(size, synchronous=synchronous, timeout=timeout)
    timeout = hub.timeout
    results = [None] * size
    errors = [None] * size

    def worker(rank):
        try:
            results[rank] = target(LoopbackComm(hub, rank))
        except BaseException as e:
            errors[rank] = e

    threads = [threading.Thread(target=worker, args=(r,), daemon=True) for r in range(size)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout * 4)
    if any(t.is_alive() for t in threads):
        raise TimeoutError("loopback ranks did not finish, probable deadlock")
    # A failing rank leaves its peers blocked; report the cause, not the timeouts
    blocked = (TimeoutError, threading.BrokenBarrierError)
    failures = [e for e in errors if e is not None]
    if failures:
        raise sorted(failures, key=lambda e: isinstance(e, blocked))[0]
    return results


@pytest.fixture
def loopback():
    """Fixture giving access to `run_on_loopback`."""
    return run_on_loopback
