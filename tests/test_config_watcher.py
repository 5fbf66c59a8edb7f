"""配置文件监控器测试"""

import asyncio

import pytest
from unittest.mock import Mock

from bot_keeper.services.config_manager import ConfigManager
from bot_keeper.services.config_watcher import ConfigWatcher, ConfigFileHandler

CONFIG_V1 = "projects:\n  - id: api\n    url: https://api.example.com\n"
CONFIG_V2 = (
    "projects:\n"
    "  - id: api\n    url: https://api.example.com\n"
    "  - id: shop\n    url: https://shop.example.com\n"
)


@pytest.fixture
def config_manager(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(CONFIG_V1, encoding='utf-8')
    manager = ConfigManager(str(path))
    manager.load_config()
    return manager


class TestConfigFileHandler:

    def test_only_target_file_triggers(self, tmp_path):
        target = str(tmp_path / 'config.yaml')
        callback = Mock()
        handler = ConfigFileHandler(target, callback)

        handler.on_modified(Mock(is_directory=False, src_path=str(tmp_path / 'other.yaml')))
        handler.on_modified(Mock(is_directory=True, src_path=target))
        callback.assert_not_called()

        handler.on_modified(Mock(is_directory=False, src_path=target))
        callback.assert_called_once()


class TestConfigWatcher:
    """测试ConfigWatcher类"""

    def test_callbacks_receive_old_and_new(self, config_manager):
        watcher = ConfigWatcher(config_manager)
        callback = Mock()
        watcher.add_change_callback(callback)

        with open(config_manager.config_path, 'w', encoding='utf-8') as f:
            f.write(CONFIG_V2)
        watcher._on_config_changed()

        old_config, new_config = callback.call_args.args
        assert len(old_config['projects']) == 1
        assert len(new_config['projects']) == 2

    def test_invalid_reload_keeps_config(self, config_manager):
        watcher = ConfigWatcher(config_manager)
        callback = Mock()
        watcher.add_change_callback(callback)

        with open(config_manager.config_path, 'w', encoding='utf-8') as f:
            f.write("projects:\n  - id: api\n")
        watcher._on_config_changed()

        callback.assert_not_called()
        assert len(config_manager.get_projects()) == 1

    def test_failing_callback_does_not_block_others(self, config_manager):
        watcher = ConfigWatcher(config_manager)
        second = Mock()
        watcher.add_change_callback(Mock(side_effect=RuntimeError("boom")))
        watcher.add_change_callback(second)

        watcher._on_config_changed()

        second.assert_called_once()

    def test_remove_callback(self, config_manager):
        watcher = ConfigWatcher(config_manager)
        callback = Mock()
        watcher.add_change_callback(callback)
        watcher.remove_change_callback(callback)

        watcher._on_config_changed()

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_change_scheduled_on_loop(self, config_manager):
        loop = asyncio.get_running_loop()
        watcher = ConfigWatcher(config_manager, loop=loop)
        changed = asyncio.Event()
        watcher.add_change_callback(lambda old, new: changed.set())

        watcher._schedule_change()
        await asyncio.wait_for(changed.wait(), timeout=1)

    def test_start_and_stop(self, config_manager):
        with ConfigWatcher(config_manager) as watcher:
            assert watcher.is_running() is True

        assert watcher.is_running() is False
        assert watcher.observer is None
