#!/usr/bin/env python3

import os
import ast
import configparser
from types import SimpleNamespace

import logging
log = logging.getLogger(__name__)


class SectionParser(object):
    true = ['true','1', 'yes', 'on']
    false = ['false', '0', 'no', 'off']

    def __init__(self, /, **kwargs):
        for k, v in kwargs.items():
            # Normalize to string for parsing while tolerating None
            sv = '' if v is None else str(v)
            s = sv.strip()

            # Detect booleans
            if s.lower() in self.true:
                parsed_val = True
            elif s.lower() in self.false:
                parsed_val = False
            # Detect list
            elif s.startswith('[') and s.endswith(']'):
                try:
                    parsed_val = ast.literal_eval(s)
                except Exception:
                    parsed_val = s
            else:
                parsed_val = s

            self.__dict__.update({k: parsed_val})

    def __repr__(self):
        items = (f"{k}={v!r}" for k, v in self.__dict__.items())
        return "{}({})".format(type(self).__name__, ", ".join(items))

    def __eq__(self, other):
        if isinstance(other, (SectionParser, SimpleNamespace)):
            return self.__dict__ == other.__dict__
        return NotImplemented


class TSConfig(object):

    _defaults = f"""
[general]
# Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
console_log_level = INFO
# File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
file_log_level = DEBUG
# Log file location
log_file = {os.path.join(os.path.expanduser("~"), ".tilestream-data", "logs", "tilestream.log")}

[scheduler]
# Maximum number of tile changes in flight per data source.
# Each source (data origin) gets its own budget, so a slow server does not
# starve the others.
max_concurrent_downloads = 6
# How the LOD of a tile is chosen:
# auto = use the distance thresholds of each layer's datasets
# lod1 = force LOD 1 (or 0 for layers with two or fewer datasets)
# lod2 = force the finest dataset of every layer
lod_method = auto
# Scale applied to every dataset distance threshold.
# Lower = fewer tiles and less detail, higher = more tiles further away
max_distance_multiplier = 1.0
# Drop tiles outside the camera frustum when the camera is high enough
filter_by_frustum = True
# Camera height below which the view range switches to a fixed square around
# the camera (frustum extents degenerate close to the ground)
ground_level_height = 20
# Half size of that square
ground_level_clip_range = 1000
# Distance (in world units) at which the distance factor of the priority
# score is 1. Nearer tiles score higher.
priority_distance = 5000

[http]
# Worker threads per HTTP layer
fetch_threads = 8
# Timeout per request in seconds
timeout = 10.0
# Retries for transient failures (timeouts, 429, 5xx)
max_retries = 2

[status]
# Serve scheduler stats over HTTP
enabled = False
port = 5055

[layers]
# Layer definitions for the simulator. List of dicts:
# [{{"name": "buildings", "tile_size": 1000, "priority": 0,
#    "datasets": [{{"source": "https://example.org/lod0?bbox=", "max_distance": 3000}},
#                 {{"source": "https://example.org/lod1?bbox=", "max_distance": 1000}}]}}]
definitions = []
"""

    def __init__(self, conf_file=None):
        self.config = configparser.ConfigParser(strict=False, allow_no_value=True, comment_prefixes='/')
        if not conf_file:
            conf_file = os.environ.get("TILESTREAM_CONFIG") or os.path.join(
                os.path.expanduser("~"), ".tilestream"
            )
        self.conf_file = conf_file

        # Always load initially
        self.ready = self.load()


    def load(self):
        self.config.read_string(self._defaults)
        if os.path.isfile(self.conf_file):
            log.info(f"Config file found {self.conf_file} reading...")
            self.config.read(self.conf_file)
        else:
            log.info("No config file found. Using defaults...")

        self.get_config()
        return True


    def _load_defaults_parser(self):
        """Create a ConfigParser loaded with internal defaults."""
        defaults_cp = configparser.ConfigParser(strict=False, allow_no_value=True, comment_prefixes='/')
        defaults_cp.read_string(self._defaults)
        return defaults_cp

    def _is_value_valid_for_default(self, current_value, default_value):
        """Validate current_value against the type implied by default_value.

        Returns True if current_value looks valid for the default's type; False otherwise.
        """
        s = '' if current_value is None else str(current_value).strip()
        d = '' if default_value is None else str(default_value).strip()

        # If default is an empty string, accept any value (including empty)
        if d == '':
            return True

        # Boolean
        if d.lower() in (SectionParser.true + SectionParser.false):
            return s.lower() in (SectionParser.true + SectionParser.false)

        # List (simple heuristic)
        if d.startswith('[') and d.endswith(']'):
            if s == '':
                return False
            try:
                parsed = ast.literal_eval(s)
                return isinstance(parsed, list)
            except Exception:
                return False

        # Integer
        try:
            int(d)
            try:
                int(s)
                return True
            except Exception:
                return False
        except Exception:
            pass

        # Float
        try:
            float(d)
            try:
                float(s)
                return True
            except Exception:
                return False
        except Exception:
            pass

        # String (non-empty required to be considered valid)
        return s != ''

    def _sanitize_and_patch_config(self):
        """Ensure all values exist and are valid; fill with defaults and mark for patching if needed."""
        defaults_cp = self._load_defaults_parser()
        patched = False

        for sect in defaults_cp.sections():
            if not self.config.has_section(sect):
                self.config.add_section(sect)
                patched = True

            for key, def_val in defaults_cp.items(sect):
                has_opt = self.config.has_option(sect, key)
                cur_val = self.config.get(sect, key, fallback=None) if has_opt else None

                needs_default = (not has_opt) or (cur_val is None) or (str(cur_val).strip() == '')
                if not needs_default:
                    # Validate type/format vs default
                    if not self._is_value_valid_for_default(cur_val, def_val):
                        log.warning(f"Invalid value {cur_val!r} for [{sect}] {key}, using default {def_val!r}")
                        needs_default = True

                if needs_default:
                    if key.startswith('#'):
                        # Avoid trailing '=' in comment lines
                        self.config.set(sect, key, None)
                    else:
                        self.config.set(sect, key, str(def_val))
                    patched = True

        # Flag for persistence after object dict is constructed
        self._patched_during_load = patched

    def get_config(self):
        # Pull info from ConfigParser object into TSConfig

        # First, sanitize and patch missing/invalid values
        self._sanitize_and_patch_config()

        config_dict = {sect: SectionParser(**dict(self.config.items(sect))) for sect in
                self.config.sections()}
        self.__dict__.update(**config_dict)

        # If we patched values of an existing file, persist them so next run is stable.
        if getattr(self, "_patched_during_load", False) and os.path.isfile(self.conf_file):
            try:
                self.save()
            except Exception as e:
                log.error(f"Failed to persist patched config defaults: {e}")
        self._patched_during_load = False
        return


    def save(self):
        log.info("Saving config ... ")
        self.set_config()

        conf_dir = os.path.dirname(self.conf_file)
        if conf_dir and not os.path.isdir(conf_dir):
            os.makedirs(conf_dir)
        with open(self.conf_file, 'w') as h:
            self.config.write(h)
        log.info(f"Wrote config file: {self.conf_file}")


    def set_config(self):
        # Push info from TSConfig into ConfigParser object

        for sect in self.config.sections():
            foo = self.__dict__.get(sect)
            if foo is None:
                continue
            for k,v in foo.__dict__.items():
                if k.startswith('#'):
                    continue
                self.config[sect][k] = str(v)

CFG = TSConfig()
