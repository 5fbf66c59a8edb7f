"""配置管理器"""

import os
from typing import Dict, Any, List, Optional

import yaml

from ..models.monitor import Project, ChannelConfig
from ..notifications.registry import channel_registry
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.log_manager import get_logger

DEFAULT_GLOBAL_CONFIG = {
    'log_level': 'INFO',
    'probe_timeout': 8,
    'max_concurrent_probes': 10,
    'tick_interval': 60,
    'database': ':memory:',
    'server': {'host': '0.0.0.0', 'port': 8080},
}


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: str):
        """
        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.last_modified: Optional[float] = None
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        if not os.path.exists(self.config_path):
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(
                f"配置文件不存在: {self.config_path}",
                ErrorCode.CONFIG_FILE_NOT_FOUND,
                config_path=self.config_path
            )

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              ErrorCode.CONFIG_PARSE_ERROR, config_path=self.config_path, cause=e)

        if config is None:
            self.logger.error("配置文件为空")
            raise ConfigError("配置文件为空", config_path=self.config_path)

        self._validate_config(config)

        projects_count = len(config.get('projects', []))
        channels_count = len(config.get('notifications', {}))
        self.logger.info(f"配置验证成功，包含 {projects_count} 个项目和 {channels_count} 个通知渠道")

        old_config = self.config.copy() if self.config else {}
        self.config = config
        self.last_modified = os.path.getmtime(self.config_path)

        if old_config:
            self._log_config_changes(old_config, config)
        else:
            self.logger.info("首次加载配置文件")

        return self.config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型")

        if 'global' in config:
            ConfigValidator.validate_global_config(config['global'])

        if 'projects' in config:
            ConfigValidator.validate_projects(config['projects'])

        if 'notifications' in config:
            if not isinstance(config['notifications'], dict):
                raise ConfigError("notifications配置必须是字典类型")
            for channel_type, channel_config in config['notifications'].items():
                ConfigValidator.validate_channel_config(channel_type, channel_config)

        if config.get('smtp'):
            ConfigValidator.validate_smtp_config(config['smtp'])

        if 'keepalive' in config:
            ConfigValidator.validate_keepalive_config(config['keepalive'])

    def get_global_config(self) -> Dict[str, Any]:
        """获取全局配置，缺省项使用默认值"""
        merged = dict(DEFAULT_GLOBAL_CONFIG)
        merged.update(self.config.get('global') or {})
        server = dict(DEFAULT_GLOBAL_CONFIG['server'])
        server.update((self.config.get('global') or {}).get('server') or {})
        merged['server'] = server
        return merged

    def get_projects(self) -> List[Project]:
        """获取配置中的项目列表"""
        return [Project.from_dict(item) for item in self.config.get('projects', [])]

    def get_channel_configs(self) -> List[ChannelConfig]:
        """获取配置中的通知渠道设置"""
        configs = []
        for channel_type, settings in (self.config.get('notifications') or {}).items():
            channel_class = channel_registry.get_channel_class(channel_type)
            configs.append(ChannelConfig.from_settings(
                channel_type, settings or {}, channel_class.destination_field
            ))
        return configs

    def get_smtp_config(self) -> Dict[str, Any]:
        return self.config.get('smtp') or {}

    def get_keepalive_config(self) -> Dict[str, Any]:
        return self.config.get('keepalive') or {}

    def is_config_changed(self) -> bool:
        """
        检查配置文件是否已修改

        Returns:
            bool: 配置文件是否已修改
        """
        try:
            if not os.path.exists(self.config_path):
                return False
            current_modified = os.path.getmtime(self.config_path)
            return self.last_modified is None or current_modified > self.last_modified
        except OSError:
            return False

    def reload_config(self) -> Dict[str, Any]:
        """
        重新加载配置文件

        Raises:
            ConfigError: 配置重新加载失败，原配置保持不变
        """
        self.logger.info("重新加载配置文件")
        return self.load_config()

    def _log_config_changes(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        old_projects = {str(p['id']): p for p in old_config.get('projects', [])}
        new_projects = {str(p['id']): p for p in new_config.get('projects', [])}

        added = set(new_projects) - set(old_projects)
        if added:
            self.logger.info(f"新增项目: {', '.join(sorted(added))}")

        removed = set(old_projects) - set(new_projects)
        if removed:
            self.logger.info(f"删除项目: {', '.join(sorted(removed))}")

        for project_id in set(old_projects) & set(new_projects):
            if old_projects[project_id] != new_projects[project_id]:
                self.logger.info(f"项目配置已修改: {project_id}")

        if old_config.get('notifications') != new_config.get('notifications'):
            self.logger.info("通知渠道配置已修改")

        if old_config.get('global') != new_config.get('global'):
            self.logger.info("全局配置已修改")
            self.logger.debug(f"旧全局配置: {old_config.get('global')}")
            self.logger.debug(f"新全局配置: {new_config.get('global')}")
