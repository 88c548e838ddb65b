#!/usr/bin/env python3
"""
Layer that fetches tile content over HTTP.

Each dataset's source_id is a URL prefix; the tile's bounding box
"minx,miny,maxx,maxy" is appended to it (WFS/WMS style bbox requests).
Fetches run on a worker pool with one requests session per worker
thread. The payload is kept as raw bytes on the tile; subclasses parse
it by overriding on_tile_data().

Retries are this layer's concern: transient failures are retried a few
times, permanent ones are not. Either way the scheduler only sees a
completed change.
"""

import threading
import logging
import concurrent.futures

import requests

from tilestream import tsconfig
from tilestream.tsstats import inc_stat, inc_many
from tilestream.layer import Layer

log = logging.getLogger(__name__)


# HTTP status codes that will never succeed on retry
PERMANENT_FAILURE_CODES = {400, 401, 403, 404, 405, 406, 410, 451}

# HTTP status codes worth retrying
TRANSIENT_FAILURE_CODES = {408, 429, 500, 502, 503, 504}


class TileFetchError(Exception):
    def __init__(self, msg, status_code=None, permanent=False):
        super().__init__(msg)
        self.status_code = status_code
        self.permanent = permanent


def create_http_session(pool_size=10):
    session = requests.Session()
    # pool_block=False: fail fast when the pool is exhausted
    adapter = requests.adapters.HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=0,
        pool_block=False,
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    log.debug(f"Created requests session (pool_size={pool_size})")
    return session


class HttpTileLayer(Layer):

    def __init__(self, name, tile_size, datasets=None, layer_priority=0, is_enabled=True,
                 num_workers=None, timeout=None, max_retries=None, retry_delay=0.5,
                 session_factory=create_http_session, headers=None):
        super().__init__(name, tile_size, datasets, layer_priority, is_enabled)
        http = tsconfig.CFG.http
        self.num_workers = max(1, int(num_workers if num_workers is not None else http.fetch_threads))
        self.timeout = float(timeout if timeout is not None else http.timeout)
        self.max_retries = max(0, int(max_retries if max_retries is not None else http.max_retries))
        self.retry_delay = retry_delay
        self.headers = headers or {"user-agent": "tilestream"}
        self._session_factory = session_factory
        self.localdata = threading.local()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.num_workers,
            thread_name_prefix=f"layer_{name}",
        )

    def tile_url(self, dataset, tile_key):
        x, y = tile_key
        return f"{dataset.source_id}{x},{y},{x + self.tile_size},{y + self.tile_size}"

    def start_tile_work(self, tile, change, callback):
        dataset = self.dataset_for(tile.lod)
        if dataset is None:
            log.warning(f"{self.name}: no dataset for LOD {tile.lod} of tile {tile.tile_key}")
            self._complete(change, callback)
            return

        if tile.busy:
            self.interrupt_running_processes(tile.tile_key)
        tile.cancel_event = threading.Event()
        url = self.tile_url(dataset, tile.tile_key)
        cancel_event = tile.cancel_event

        future = self._executor.submit(self._fetch, url, cancel_event)
        tile.future = future
        future.add_done_callback(
            lambda f: self._on_fetched(tile, change, f, cancel_event, callback)
        )

    def _session(self):
        session = getattr(self.localdata, 'session', None)
        if session is None:
            try:
                session = self._session_factory(pool_size=max(4, self.num_workers))
            except Exception as _e:
                log.warning(f"Failed to initialize thread-local session: {_e}")
                session = requests.Session()
            self.localdata.session = session
        return session

    def _fetch(self, url, cancel_event):
        """
        GET url, retrying transient failures.

        Returns:
            Response body, or None if cancelled

        Raises:
            TileFetchError: On permanent failure or when retries run out
        """
        session = self._session()
        attempts = self.max_retries + 1
        last_err = None
        for attempt in range(attempts):
            if cancel_event.is_set():
                return None
            log.debug(f"Requesting {url} ..")
            try:
                resp = session.get(url, headers=self.headers, timeout=self.timeout)
            except requests.RequestException as err:
                last_err = TileFetchError(f"{url}: {err}")
                inc_stat('http_conn_err')
            else:
                try:
                    status_code = resp.status_code
                    if status_code == 200:
                        return resp.content
                    inc_many({f"http_{status_code}": 1, "req_err": 1})
                    if status_code in PERMANENT_FAILURE_CODES:
                        raise TileFetchError(f"{url}: HTTP {status_code}", status_code, permanent=True)
                    last_err = TileFetchError(f"{url}: HTTP {status_code}", status_code)
                    if status_code not in TRANSIENT_FAILURE_CODES:
                        raise last_err
                finally:
                    resp.close()

            if attempt + 1 < attempts:
                log.debug(f"Retrying {url} ({attempt + 1}/{self.max_retries})")
                if cancel_event.wait(self.retry_delay * (attempt + 1)):
                    return None
        raise last_err

    def _on_fetched(self, tile, change, future, cancel_event, callback):
        try:
            if future.cancelled() or cancel_event.is_set():
                inc_stat('tile_cancelled')
                return
            err = future.exception()
            if err is not None:
                log.warning(f"{self.name}: failed {change.action.value} of tile {tile.tile_key}: {err}")
                inc_stat('tile_failed')
                return
            data = future.result()
            if data is None:
                return
            tile.data = data
            self.on_tile_data(tile, data)
            inc_many({'tile_ok': 1, 'bytes_dl': len(data)})
        except Exception as err:
            log.error(f"{self.name}: error processing tile {tile.tile_key}: {err}")
        finally:
            self._complete(change, callback)

    def on_tile_data(self, tile, data):
        """Hook for subclasses to parse fetched content."""
        pass

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
