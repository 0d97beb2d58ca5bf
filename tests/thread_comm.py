# -*- coding: utf-8 -*-
"""In-process multi-rank harness: one thread per rank, queues as the network.

ThreadComm implements the same method surface as torpic.mpi_utils.Comm so the
partition hierarchy and aggregation code run unchanged on N "ranks".
"""

# Import copy for message payload isolation.
import copy

# Import queue/threading for the fake network.
import queue
import threading

# Import typing primitives.
from typing import Any, Callable, Dict, List, Tuple

# Import numpy.
import numpy as np

# Import local operators.
from torpic.mpi_utils import ReduceOp

TIMEOUT_S = 20.0
_COLL_TAG = -1


class Fabric:
    """Mailboxes keyed by (context, source, dest, tag)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._boxes: Dict[Tuple[Any, ...], "queue.Queue[Any]"] = {}

    def box(self, key: Tuple[Any, ...]) -> "queue.Queue[Any]":
        with self._lock:
            q = self._boxes.get(key)
            if q is None:
                q = self._boxes[key] = queue.Queue()
            return q


class ThreadComm:
    def __init__(self, fabric: Fabric, context: Tuple[Any, ...], rank: int, size: int, name: str = "world") -> None:
        self._fabric = fabric
        self._context = context
        self._rank = rank
        self._size = size
        self._nsplit = 0
        self.name = name

    @property
    def handle(self) -> "ThreadComm":
        return self

    def rank(self) -> int:
        return self._rank

    def size(self) -> int:
        return self._size

    # Point-to-point primitives.
    def _send(self, obj: Any, dest: int, tag: int) -> None:
        payload = np.array(obj, copy=True) if isinstance(obj, np.ndarray) else copy.deepcopy(obj)
        self._fabric.box((self._context, self._rank, dest, tag)).put(payload)

    def _recv(self, source: int, tag: int) -> Any:
        try:
            return self._fabric.box((self._context, source, self._rank, tag)).get(timeout=TIMEOUT_S)
        except queue.Empty:
            raise TimeoutError(f"{self.name} rank {self._rank} timed out waiting on rank {source} (tag {tag})") from None

    def _allgather(self, obj: Any) -> List[Any]:
        for r in range(self._size):
            if r != self._rank:
                self._send(obj, r, _COLL_TAG)
        return [obj if r == self._rank else self._recv(r, _COLL_TAG) for r in range(self._size)]

    # Comm surface.
    def split(self, color: int, key: int, name: str = "sub") -> "ThreadComm":
        entries = self._allgather((int(color), int(key), self._rank))
        members = sorted((k, r) for c, k, r in entries if c == int(color))
        new_rank = members.index((int(key), self._rank))
        context = self._context + ((self._nsplit, int(color)),)
        self._nsplit += 1
        return ThreadComm(self._fabric, context, new_rank, len(members), name=name)

    def reduce(self, array: np.ndarray, op: ReduceOp, root: int = 0) -> None:
        if self._rank != root:
            self._send(array, root, _COLL_TAG)
            return
        for r in range(self._size):
            if r != root:
                op.ufunc(array, self._recv(r, _COLL_TAG), out=array)

    def bcast(self, array: np.ndarray, root: int = 0) -> None:
        if self._rank == root:
            for r in range(self._size):
                if r != root:
                    self._send(array, r, _COLL_TAG)
        else:
            array[...] = self._recv(root, _COLL_TAG)

    def bcast_obj(self, obj: Any, root: int = 0) -> Any:
        if self._rank == root:
            for r in range(self._size):
                if r != root:
                    self._send(obj, r, _COLL_TAG)
            return obj
        return self._recv(root, _COLL_TAG)

    def sendrecv(self, sendbuf: np.ndarray, dest: int, recvbuf: np.ndarray, source: int, tag: int = 0) -> None:
        self._send(sendbuf, dest, tag)
        recvbuf[...] = self._recv(source, tag)

    def exchange(self, sendbufs: Dict[int, np.ndarray], recvbufs: Dict[int, np.ndarray], tag: int = 0) -> None:
        for dst in sorted(sendbufs):
            self._send(sendbufs[dst], dst, tag)
        for src in sorted(recvbufs):
            recvbufs[src][...] = self._recv(src, tag)

    def allreduce(self, value: Any, op: ReduceOp) -> Any:
        values = self._allgather(value)
        return op.ufunc.reduce(np.asarray(values)).item()

    def barrier(self) -> None:
        self._allgather(None)

    def abort(self, errorcode: int = 1) -> None:
        raise RuntimeError(f"abort({errorcode}) on {self.name} rank {self._rank}")


def run_spmd(size: int, fn: Callable[..., Any], *args: Any) -> List[Any]:
    """Run fn(world_comm, *args) on `size` threads and return per-rank results."""
    fabric = Fabric()
    results: List[Any] = [None] * size
    errors: List[BaseException | None] = [None] * size

    def target(r: int) -> None:
        try:
            results[r] = fn(ThreadComm(fabric, ("world",), r, size), *args)
        except BaseException as exc:
            errors[r] = exc

    threads = [threading.Thread(target=target, args=(r,), daemon=True) for r in range(size)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=3 * TIMEOUT_S)
    if any(t.is_alive() for t in threads):
        raise TimeoutError("SPMD run did not finish")
    for exc in errors:
        if exc is not None:
            raise exc
    return results
