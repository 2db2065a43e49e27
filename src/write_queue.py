#!/usr/bin/env python3

"""
write_queue.py - Background FIFO executor for durable save writes

Persistence work (record, thumbnail, index commit) is taken off the
emulation tick and run on one worker thread.  Jobs run strictly in
submission order, so a newer write for a (profile, game) key can never
finish before, or commit its index over, an older one.
"""

import queue
import threading

_STOP = object()


class WriteQueue:
    """
    Single-worker FIFO job queue.

    Jobs are plain callables.  A job that raises is reported and dropped;
    the worker keeps running.  With threaded=False jobs run inline in
    submit(), which keeps the same ordering without a thread.
    """

    def __init__(self, name="SaveWriter", threaded=True):
        self.name = name
        self.threaded = threaded
        self._queue = queue.Queue()
        self._pending = 0
        self._cond = threading.Condition()
        self._thread = None
        self._closed = False
        if threaded:
            self._thread = threading.Thread(target=self._worker, name=name, daemon=True)
            self._thread.start()

    def submit(self, job):
        if self._closed:
            raise RuntimeError(f"{self.name} is closed")
        if not self.threaded:
            self._run(job)
            return
        with self._cond:
            self._pending += 1
        self._queue.put(job)

    @property
    def pending(self):
        with self._cond:
            return self._pending

    def flush(self, timeout=None):
        """Block until every submitted job has finished. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout)

    def close(self, timeout=5.0):
        """Drain outstanding jobs and stop the worker."""
        if self._closed:
            return
        self._closed = True
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                print(f"[{self.name}] Worker did not stop within {timeout}s")

    def _run(self, job):
        try:
            job()
        except Exception as e:
            print(f"[{self.name}] Write job failed: {e}")

    def _worker(self):
        while True:
            job = self._queue.get()
            if job is _STOP:
                break
            self._run(job)
            with self._cond:
                self._pending -= 1
                self._cond.notify_all()
