"""
Process-wide counters for the streamer.

The ticking thread and the layer worker threads both bump counters, so
every access goes through the store's lock.
"""

import os
import time
import threading
import collections
import psutil

import logging
log = logging.getLogger(__name__)


class StatsStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._data = {}  # dict[str, int]

    def inc(self, key, amount=1):
        with self._lock:
            value = self._data.get(key, 0) + amount
            self._data[key] = value
            return value

    def inc_many(self, items):
        with self._lock:
            for key, amount in items.items():
                self._data[key] = self._data.get(key, 0) + amount

    def set(self, key, value):
        with self._lock:
            self._data[key] = value

    def snapshot(self):
        with self._lock:
            return dict(self._data)


_store = StatsStore()


def set_stat(stat, value):
    _store.set(stat, value)


def inc_stat(stat, amount=1):
    return _store.inc(stat, amount)


def inc_many(items: dict):
    _store.inc_many(items)


def snapshot():
    return _store.snapshot()


def update_process_memory_stat():
    """Record this process's RSS (proc_mem_rss_bytes) and a heartbeat (proc_alive_ts)."""
    try:
        rss = psutil.Process(os.getpid()).memory_info().rss
    except psutil.Error as err:
        log.debug(f"update_process_memory_stat: {err}")
        return
    set_stat("proc_mem_rss_bytes", int(rss))
    set_stat("proc_alive_ts", int(time.time()))


class StatsReporter(object):
    """Logs a stats snapshot every `interval` seconds on a daemon thread."""

    def __init__(self, interval=10.0):
        self.interval = interval
        self.running = False
        self._stop = threading.Event()
        self._t = None

    def start(self):
        if self.running:
            return
        self.running = True
        self._stop.clear()
        self._t = threading.Thread(daemon=True, target=self.show, name="StatsReporter")
        self._t.start()

    def stop(self):
        if not self.running:
            return
        self.running = False
        self._stop.set()
        self._t.join()

    def show(self):
        while not self._stop.wait(self.interval):
            update_process_memory_stat()
            log.info(f"STATS: {snapshot()}")


class StatTracker(object):
    """Rolling average of the last `maxlen` samples per key."""

    def __init__(self, maxlen=25):
        self.maxlen = maxlen
        self.samples = {}
        self.averages = {}

    def set(self, key, value):
        window = self.samples.setdefault(key, collections.deque(maxlen=self.maxlen))
        window.append(value)
        self.averages[key] = round(sum(window) / len(window), 3)
