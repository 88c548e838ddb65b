#!/usr/bin/env python3
"""
Command line simulator: flies a top-down camera along a straight line
and streams the configured HTTP layers around it.
"""

import os
import time
import argparse

from tilestream import __version__
from tilestream import tsconfig
from tilestream.httplayer import HttpTileLayer
from tilestream.scheduler import SchedulerSettings, TileScheduler
from tilestream.tsstats import StatsReporter, snapshot, update_process_memory_stat
from tilestream.utils.lod import LodLadder
from tilestream.viewrange import TopDownCamera

import logging
log = logging.getLogger(__name__)


def layers_from_config(cfg=None):
    """
    Build HttpTileLayers from [layers] definitions.

    Broken definitions are logged and skipped.
    """
    cfg = cfg or tsconfig.CFG
    definitions = cfg.layers.definitions
    if not isinstance(definitions, list):
        log.warning(f"[layers] definitions is not a list: {definitions!r}")
        return []

    layers = []
    for i, item in enumerate(definitions):
        if not isinstance(item, dict):
            log.warning(f"Skipping layer definition {i}: not a dict")
            continue
        name = item.get("name") or f"layer{i}"
        ladder = LodLadder()
        ladder.load_from_config(item.get("datasets"))
        for warning in ladder.validate():
            log.warning(f"Layer {name}: {warning}")
        try:
            layer = HttpTileLayer(
                name,
                int(item.get("tile_size", 1000)),
                datasets=ladder.datasets,
                layer_priority=int(item.get("priority", 0)),
                is_enabled=bool(item.get("enabled", True)),
            )
        except (TypeError, ValueError) as e:
            log.warning(f"Skipping layer definition {i}: {e}")
            continue
        log.info(f"Layer {name}: {ladder.get_summary()}")
        layers.append(layer)
    return layers


def camera_path(start, end, ticks):
    """Yield evenly spaced (x, y) points from start to end inclusive."""
    if ticks <= 1:
        yield start
        return
    for i in range(ticks):
        t = i / (ticks - 1)
        yield (start[0] + (end[0] - start[0]) * t,
               start[1] + (end[1] - start[1]) * t)


def main(argv=None):
    log.info(f"tilestream version: {__version__}")

    parser = argparse.ArgumentParser(
        description="tilestream: stream map tiles around a moving camera"
    )
    parser.add_argument(
        "-c",
        "--config",
        help = "Config file to use instead of ~/.tilestream"
    )
    parser.add_argument(
        "--ticks",
        type=int,
        default=100,
        help = "Number of scheduler ticks to run."
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=0.1,
        help = "Seconds between ticks."
    )
    parser.add_argument(
        "--start",
        type=float,
        nargs=2,
        default=[0.0, 0.0],
        metavar=("X", "Y"),
        help = "Camera start position."
    )
    parser.add_argument(
        "--end",
        type=float,
        nargs=2,
        default=[10000.0, 0.0],
        metavar=("X", "Y"),
        help = "Camera end position."
    )
    parser.add_argument(
        "--height",
        type=float,
        default=500.0,
        help = "Camera height above ground."
    )
    parser.add_argument(
        "--status",
        default=False,
        action="store_true",
        help = "Serve scheduler stats over HTTP."
    )
    parser.add_argument(
        "--stats-every",
        type=int,
        default=10,
        help = "Log stats every N ticks."
    )

    args = parser.parse_args(argv)

    if args.config and args.config != tsconfig.CFG.conf_file:
        tsconfig.CFG = tsconfig.TSConfig(args.config)
    CFG = tsconfig.CFG
    if not os.path.isfile(CFG.conf_file):
        # Leave an editable config behind on first run
        try:
            CFG.save()
        except OSError as e:
            log.warning(f"Could not write config file {CFG.conf_file}: {e}")

    layers = layers_from_config(CFG)
    if not layers:
        log.warning("No layers configured. Add definitions to the [layers] section.")

    camera = TopDownCamera(args.start[0], args.start[1], args.height)
    scheduler = TileScheduler(camera, layers, SchedulerSettings.from_config(CFG))

    if args.status or CFG.status.enabled:
        from tilestream import statusweb
        statusweb.run(scheduler, int(CFG.status.port))

    reporter = StatsReporter(interval=10.0)
    reporter.start()
    try:
        for i, (x, y) in enumerate(camera_path(args.start, args.end, args.ticks)):
            camera.move_to(x, y)
            scheduler.tick()
            if args.stats_every and (i + 1) % args.stats_every == 0:
                update_process_memory_stat()
                log.info(f"Tick {i + 1}: {scheduler}")
                log.debug(f"STATS: {snapshot()}")
            time.sleep(args.interval)
    except KeyboardInterrupt:
        log.info("Shutdown requested.")
    finally:
        reporter.stop()
        for layer in layers:
            layer.shutdown()

    log.info(f"Done: {scheduler.snapshot()['sources']}")
    log.info("tilestream exit.")
    return 0


if __name__ == '__main__':
    main()
