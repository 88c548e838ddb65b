#!/usr/bin/env python3
"""
Unit tests for the command line simulator.
"""

from types import SimpleNamespace

import pytest

from tilestream import __main__ as entry
from tilestream import streamer, tsconfig
from tilestream.httplayer import HttpTileLayer


def config_with(definitions):
    return SimpleNamespace(layers=SimpleNamespace(definitions=definitions))


class TestCameraPath:

    def test_linear_inclusive(self):
        assert list(streamer.camera_path((0, 0), (10, -10), 3)) == [(0, 0), (5, -5), (10, -10)]

    def test_single_tick(self):
        assert list(streamer.camera_path((1, 2), (10, 10), 1)) == [(1, 2)]


class TestLayersFromConfig:
    """Tests for building layers from [layers] definitions."""

    def test_builds_http_layers(self):
        layers = streamer.layers_from_config(config_with([
            {"name": "buildings", "tile_size": 500, "priority": 2,
             "datasets": [{"source": "http://a/?bbox=", "max_distance": 3000},
                          {"source": "http://b/?bbox=", "max_distance": 1000}]},
        ]))
        try:
            (layer,) = layers
            assert isinstance(layer, HttpTileLayer)
            assert layer.tile_size == 500
            assert layer.layer_priority == 2
            assert layer.source_id == "http://a/?bbox="
            assert [ds.max_distance_squared for ds in layer.datasets] == [3000 ** 2, 1000 ** 2]
        finally:
            for lay in layers:
                lay.shutdown()

    def test_skips_broken_definitions(self):
        layers = streamer.layers_from_config(config_with([
            "nope",
            {"name": "zero", "tile_size": 0},
            {"tile_size": 100},
        ]))
        try:
            assert [lay.name for lay in layers] == ["layer2"]
        finally:
            for lay in layers:
                lay.shutdown()

    def test_not_a_list(self):
        assert streamer.layers_from_config(config_with("[broken")) == []


class TestMain:

    def test_runs_without_layers(self, tmp_path, monkeypatch):
        monkeypatch.setattr(tsconfig, "CFG", tsconfig.CFG)
        conf_file = tmp_path / "tilestream.ini"
        rc = streamer.main([
            "--config", str(conf_file), "--ticks", "3", "--interval", "0",
            "--start", "0", "0", "--end", "100", "0", "--stats-every", "1",
        ])
        assert rc == 0
        # first run leaves a config file behind
        assert conf_file.exists()

    def test_keeps_config_already_loaded(self, tmp_path, monkeypatch):
        conf_file = tmp_path / "tilestream.ini"
        cfg = tsconfig.TSConfig(str(conf_file))
        monkeypatch.setattr(tsconfig, "CFG", cfg)
        rc = streamer.main(["--config", str(conf_file), "--ticks", "1", "--interval", "0"])
        assert rc == 0
        assert tsconfig.CFG is cfg


class TestRun:

    def test_config_bound_before_logging(self, tmp_path, monkeypatch):
        monkeypatch.setattr(tsconfig, "CFG", tsconfig.CFG)
        conf_file = tmp_path / "tilestream.ini"
        conf_file.write_text("[general]\nconsole_log_level = WARNING\n")
        seen = []
        monkeypatch.setattr(entry, "setuplogs", lambda: seen.append(tsconfig.CFG))
        monkeypatch.setattr(streamer, "main", lambda argv=None: 0)

        assert entry.run(["--config", str(conf_file), "--ticks", "1"]) == 0
        assert seen[0].conf_file == str(conf_file)
        assert seen[0].general.console_log_level == "WARNING"

    def test_default_config_without_flag(self, monkeypatch):
        cfg = tsconfig.CFG
        monkeypatch.setattr(tsconfig, "CFG", cfg)
        entry.load_config(["--ticks", "1"])
        assert tsconfig.CFG is cfg
