#!/usr/bin/env python3
"""
Unit tests for view range resolution and the top-down camera.
"""

import pytest

from tilestream.viewrange import (
    CameraPosition,
    Extent,
    TopDownCamera,
    ViewProvider,
    ViewRange,
    get_camera_position,
    resolve_view_range,
)


def square_camera(x=0, y=0, height=500):
    """Camera whose footprint is clipped to a +/-400 square."""
    return TopDownCamera(x, y, height, fov_deg=90, far_clip=400)


# =============================================================================
# TopDownCamera Tests
# =============================================================================


class TestTopDownCamera:
    """Tests for the reference view provider."""

    def test_visible_extent(self):
        cam = square_camera()
        assert cam.visible_extent() == Extent(-400, -400, 400, 400)

    def test_visible_extent_padding(self):
        cam = square_camera(100, 0)
        assert cam.visible_extent(padding=100) == Extent(-400, -500, 600, 500)

    def test_footprint_grows_with_height(self):
        cam = TopDownCamera(0, 0, 100, fov_deg=60, far_clip=5000)
        low = cam.visible_extent().max_x
        cam.move_to(0, 0, 200)
        assert cam.visible_extent().max_x == pytest.approx(2 * low)

    def test_tile_in_frustum(self):
        cam = square_camera()
        assert cam.tile_in_frustum(300, 300, 400, 400)
        assert cam.tile_in_frustum(-1000, -1000, 1000, 1000)
        assert not cam.tile_in_frustum(401, 0, 500, 100)
        assert not cam.tile_in_frustum(0, -900, 100, -401)

    def test_move_to_keeps_height(self):
        cam = square_camera()
        cam.move_to(5, 6)
        assert cam.camera_position() == (5, 6, 500)


class TestViewProvider:
    """Tests for the abstract provider."""

    def test_base_methods_raise(self):
        view = ViewProvider()
        with pytest.raises(NotImplementedError):
            view.camera_position()
        with pytest.raises(NotImplementedError):
            view.visible_extent(0)
        with pytest.raises(NotImplementedError):
            view.tile_in_frustum(0, 0, 1, 1)


# =============================================================================
# resolve_view_range Tests
# =============================================================================


class TestResolveViewRange:
    """Tests for far and near (ground level) modes."""

    def test_far_mode_pads_by_max_tile_size(self):
        view_range, radial = resolve_view_range(square_camera(), 100)
        assert view_range == ViewRange(-500, -500, 1000, 1000)
        assert radial is False

    def test_near_mode_uses_clip_square(self):
        view_range, radial = resolve_view_range(square_camera(50, 20, 10), 100)
        assert view_range == ViewRange(-950, -980, 2000, 2000)
        assert radial is True

    def test_ground_level_height_is_inclusive(self):
        _, radial = resolve_view_range(square_camera(height=20), 100)
        assert radial is True
        _, radial = resolve_view_range(square_camera(height=21), 100)
        assert radial is False

    def test_custom_ground_level(self):
        view_range, radial = resolve_view_range(
            square_camera(height=100), 100, ground_level_height=150, ground_level_clip_range=10
        )
        assert radial is True
        assert view_range == ViewRange(-10, -10, 20, 20)

    def test_view_range_max(self):
        vr = ViewRange(-5, 10, 20, 30)
        assert vr.max_x == 15
        assert vr.max_y == 40


class TestCameraPosition:

    def test_truncates_to_ints(self):
        cam = TopDownCamera(10.7, -3.2, 99.9)
        assert get_camera_position(cam) == CameraPosition(10, -3, 99)
