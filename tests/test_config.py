"""Tests for the mapmerge.config module and package exports."""

from unittest.mock import patch

import mapmerge
from mapmerge import config


class TestGet:
    """Tests for settings lookup."""

    def test_explicit_value_wins(self):
        with patch("mapmerge.config.settings") as mock_settings:
            assert config.get("tile_size", 512) == 512
            mock_settings.get.assert_not_called()

    def test_falsy_explicit_value_wins(self):
        """Only None falls back to settings."""
        with patch("mapmerge.config.settings") as mock_settings:
            mock_settings.get.return_value = 99
            assert config.get("limit", 0) == 0

    def test_default_when_unset(self):
        with patch("mapmerge.config.settings") as mock_settings:
            mock_settings.get.side_effect = lambda key, default=None: default
            assert config.get("tile_size") == 1024
            assert config.get("tile_format") == "webp"
            assert config.get("x_offset") == 512

    def test_settings_value_used(self):
        with patch("mapmerge.config.settings") as mock_settings:
            mock_settings.get.return_value = 256
            assert config.get("tile_size") == 256
            mock_settings.get.assert_called_once_with("tile_size", 1024)


class TestChangeEnv:
    """Tests for switching settings environments."""

    def test_switches_and_reloads(self):
        with patch("mapmerge.config.settings") as mock_settings:
            config.change_env("production")
            mock_settings.setenv.assert_called_once_with("production")
            mock_settings.reload.assert_called_once()


class TestPackage:
    """Tests for the package namespace."""

    def test_exports(self):
        assert issubclass(mapmerge.ConfigurationError, mapmerge.MapMergeError)
        assert issubclass(mapmerge.TileDecodeError, mapmerge.MapMergeError)
        assert issubclass(mapmerge.PyramidError, mapmerge.MapMergeError)
        assert callable(mapmerge.run)
        assert mapmerge.__version__
