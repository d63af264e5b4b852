import json
import logging

import pytest

from cinesync.settings import SETTINGS_FILENAME, Settings, get_settings_manager


@pytest.mark.asyncio
async def test_defaults_when_file_is_missing(tmp_path):
    manager = await get_settings_manager(tmp_path)

    assert manager.settings_file == tmp_path / SETTINGS_FILENAME
    assert manager.player_volume == 80
    assert manager.duck_volume == 20
    assert manager.last_relay_url is None
    assert manager.save_pending is False


@pytest.mark.asyncio
async def test_update_and_flush_persist(tmp_path):
    manager = await get_settings_manager(tmp_path)

    manager.update(player_volume=55, last_video_url="https://example.com/movie.mp4")
    assert manager.save_pending is True
    await manager.flush()

    assert manager.save_pending is False
    data = json.loads((tmp_path / SETTINGS_FILENAME).read_text())
    assert data["player_volume"] == 55
    assert data["last_video_url"] == "https://example.com/movie.mp4"

    reloaded = await get_settings_manager(tmp_path)
    assert reloaded.player_volume == 55
    assert reloaded.last_video_url == "https://example.com/movie.mp4"


@pytest.mark.asyncio
async def test_unchanged_update_does_not_schedule_save(tmp_path):
    manager = await get_settings_manager(tmp_path)

    manager.update(player_volume=80, display_name=None)

    assert manager.save_pending is False


@pytest.mark.asyncio
async def test_volumes_are_clamped(tmp_path):
    manager = await get_settings_manager(tmp_path)

    manager.update(player_volume=140, duck_volume=-5)

    assert manager.player_volume == 100
    assert manager.duck_volume == 0
    await manager.flush()


def test_from_dict_tolerates_bad_values():
    settings = Settings.from_dict({"player_volume": "loud", "duck_volume": 30})

    assert settings.player_volume == 0
    assert settings.duck_volume == 30
    assert settings.display_name is None


@pytest.mark.asyncio
async def test_invalid_file_is_ignored_with_warning(tmp_path, caplog):
    (tmp_path / SETTINGS_FILENAME).write_text("[1, 2, 3]")

    with caplog.at_level(logging.WARNING, logger="cinesync.settings"):
        manager = await get_settings_manager(tmp_path)

    assert manager.player_volume == 80
    assert "Failed to load settings" in caplog.text
