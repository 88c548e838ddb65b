#!/usr/bin/env python3
"""
Unit tests for the Layer base class.
"""

from concurrent.futures import Future
from unittest.mock import Mock

import pytest

from tilestream.changes import TileAction, TileChange, make_remove
from tilestream.layer import Layer, Tile
from tilestream.utils.lod import DataSet


def change(action, x=0, y=0, lod=0):
    return TileChange(action, x, y, 0, "A", 1, lod=lod)


@pytest.fixture
def layer():
    lay = Layer("buildings", 100, [DataSet("A", 10 ** 6), DataSet("B", 10 ** 4)])
    lay.layer_id = 0
    return lay


class TestLayerBasics:

    def test_invalid_tile_size(self):
        with pytest.raises(ValueError):
            Layer("bad", 0)

    def test_source_id_from_first_dataset(self, layer):
        assert layer.source_id == "A"

    def test_source_id_defaults_to_name(self):
        assert Layer("roads", 10).source_id == "roads"

    def test_dataset_for(self, layer):
        assert layer.dataset_for(1).source_id == "B"
        assert layer.dataset_for(2) is None
        assert layer.dataset_for(-1) is None


class TestHandleTile:
    """Tests for applying each kind of change."""

    def test_create_then_complete(self, layer):
        callback = Mock()
        c = change(TileAction.CREATE, lod=1)
        layer.handle_tile(c, callback)
        assert layer.tiles[(0, 0)].lod == 1
        callback.assert_called_once_with(c)

    def test_upgrade_and_downgrade_set_lod(self, layer):
        layer.tiles[(0, 0)] = Tile((0, 0), lod=0)
        layer.handle_tile(change(TileAction.UPGRADE, lod=1))
        assert layer.tiles[(0, 0)].lod == 1
        layer.handle_tile(change(TileAction.DOWNGRADE, lod=0))
        assert layer.tiles[(0, 0)].lod == 0

    def test_upgrade_missing_tile_completes(self, layer):
        callback = Mock()
        layer.handle_tile(change(TileAction.UPGRADE, lod=1), callback)
        assert layer.tiles == {}
        callback.assert_called_once()

    def test_remove_is_idempotent(self, layer):
        """Test that removing an absent tile twice is a no-op."""
        callback = Mock()
        remove = make_remove(layer, (5, 5))
        layer.handle_tile(remove, callback)
        layer.handle_tile(remove, callback)
        assert layer.tiles == {}
        assert callback.call_count == 2
        assert layer.remove_tile((5, 5)) is False

    def test_remove_interrupts_work(self, layer):
        future = Future()
        tile = Tile((0, 0), future=future)
        layer.tiles[(0, 0)] = tile
        assert tile.busy
        assert layer.remove_tile((0, 0)) is True
        assert tile.cancel_event.is_set()
        assert future.cancelled()
        assert (0, 0) not in layer.tiles

    def test_callback_error_is_contained(self, layer):
        callback = Mock(side_effect=RuntimeError("boom"))
        layer.handle_tile(change(TileAction.CREATE), callback)
        assert (0, 0) in layer.tiles


class TestInterrupt:

    def test_unknown_tile(self, layer):
        layer.interrupt_running_processes((9, 9))

    def test_twice(self, layer):
        layer.tiles[(0, 0)] = Tile((0, 0), future=Future())
        layer.interrupt_running_processes((0, 0))
        layer.interrupt_running_processes((0, 0))
        assert layer.tiles[(0, 0)].future is None
