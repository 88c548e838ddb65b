#!/usr/bin/env python3
"""
Unit tests for config loading, sanitizing and saving.
"""

import configparser

from tilestream.scheduler import SchedulerSettings
from tilestream.tsconfig import SectionParser, TSConfig
from tilestream.utils.lod import LodCalculationMethod


# =============================================================================
# SectionParser Tests
# =============================================================================


class TestSectionParser:

    def test_value_detection(self):
        sp = SectionParser(a="True", b="off", c="[1, 2]", d="5", e=None, f="[broken")
        assert sp.a is True
        assert sp.b is False
        assert sp.c == [1, 2]
        assert sp.d == "5"
        assert sp.e == ""
        assert sp.f == "[broken"


# =============================================================================
# TSConfig Tests
# =============================================================================


class TestTSConfig:
    """Tests for TSConfig with files under tmp_path."""

    def test_defaults_without_file(self, tmp_path):
        conf_file = tmp_path / "tilestream.ini"
        cfg = TSConfig(str(conf_file))
        assert cfg.scheduler.max_concurrent_downloads == "6"
        assert cfg.scheduler.lod_method == "auto"
        assert cfg.scheduler.filter_by_frustum is True
        assert cfg.status.enabled is False
        assert cfg.layers.definitions == []
        # defaults alone are never written out
        assert not conf_file.exists()

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        conf_file = tmp_path / "from_env.ini"
        monkeypatch.setenv("TILESTREAM_CONFIG", str(conf_file))
        assert TSConfig().conf_file == str(conf_file)

    def test_file_values_override_defaults(self, tmp_path):
        conf_file = tmp_path / "tilestream.ini"
        conf_file.write_text("[scheduler]\nmax_concurrent_downloads = 2\nlod_method = lod1\n")
        cfg = TSConfig(str(conf_file))
        assert cfg.scheduler.max_concurrent_downloads == "2"
        assert cfg.scheduler.lod_method == "lod1"

    def test_invalid_value_patched_and_saved(self, tmp_path):
        conf_file = tmp_path / "tilestream.ini"
        conf_file.write_text(
            "[scheduler]\nmax_concurrent_downloads = lots\nfilter_by_frustum = maybe\n"
        )
        cfg = TSConfig(str(conf_file))
        assert cfg.scheduler.max_concurrent_downloads == "6"
        assert cfg.scheduler.filter_by_frustum is True

        saved = configparser.ConfigParser()
        saved.read(str(conf_file))
        assert saved["scheduler"]["max_concurrent_downloads"] == "6"
        # missing sections are filled in too
        assert saved["http"]["fetch_threads"] == "8"

    def test_layer_definitions_parsed(self, tmp_path):
        conf_file = tmp_path / "tilestream.ini"
        conf_file.write_text(
            '[layers]\ndefinitions = [{"name": "b", "tile_size": 100, '
            '"datasets": [{"source": "a", "max_distance": 10}]}]\n'
        )
        cfg = TSConfig(str(conf_file))
        assert cfg.layers.definitions[0]["name"] == "b"
        assert cfg.layers.definitions[0]["datasets"][0]["max_distance"] == 10

    def test_save_round_trip(self, tmp_path):
        conf_file = tmp_path / "sub" / "tilestream.ini"
        cfg = TSConfig(str(conf_file))
        cfg.scheduler.max_concurrent_downloads = 3
        cfg.save()
        assert conf_file.exists()
        again = TSConfig(str(conf_file))
        assert again.scheduler.max_concurrent_downloads == "3"


class TestSettingsFromConfig:

    def test_from_config(self, tmp_path):
        conf_file = tmp_path / "tilestream.ini"
        conf_file.write_text("[scheduler]\nmax_concurrent_downloads = 2\nlod_method = fixed2\n"
                             "max_distance_multiplier = 1.5\n")
        settings = SchedulerSettings.from_config(TSConfig(str(conf_file)))
        assert settings.max_concurrent_downloads == 2
        assert settings.lod_method is LodCalculationMethod.LOD2
        assert settings.max_distance_multiplier == 1.5
        assert settings.filter_by_frustum is True
        assert settings.priority_k == 5000.0 ** 2
