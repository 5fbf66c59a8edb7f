#!/usr/bin/env python3
"""
Bot Keeper 主应用程序入口

集成存储、探测、状态跟踪、通知分发和各个触发源，
提供 HTTP 服务、后备定时检测和保活循环，支持信号处理和优雅关闭。
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional, Dict, Any, Set

from bot_keeper import __version__
from bot_keeper.api.server import create_app, start_http_api
from bot_keeper.notifications.dispatcher import NotificationDispatcher
from bot_keeper.probes.http_prober import HttpProber, DEFAULT_USER_AGENT
from bot_keeper.services.config_manager import ConfigManager
from bot_keeper.services.config_watcher import ConfigWatcher
from bot_keeper.services.keepalive import KeepAliveClient
from bot_keeper.services.monitor_pipeline import MonitorPipeline
from bot_keeper.services.tick_scheduler import TickScheduler
from bot_keeper.storage import create_store, MonitorStore
from bot_keeper.utils.exceptions import BotKeeperError, ConfigError, ValidationError
from bot_keeper.utils.log_manager import log_manager, get_logger
from bot_keeper.utils.retry import RetryPolicy


class BotKeeperApp:
    """Bot Keeper 主应用程序类"""

    def __init__(self, config_path: str, log_overrides: Optional[Dict[str, Any]] = None):
        """
        Args:
            config_path: 配置文件路径
            log_overrides: 命令行传入的日志配置，覆盖配置文件中的同名项
        """
        self.config_path = config_path
        self.log_overrides = log_overrides or {}
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        self.config_manager: Optional[ConfigManager] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.store: Optional[MonitorStore] = None
        self.prober: Optional[HttpProber] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.pipeline: Optional[MonitorPipeline] = None
        self.tick_scheduler: Optional[TickScheduler] = None
        self.keepalive: Optional[KeepAliveClient] = None
        self.runner = None

        self.background_tasks: Set[asyncio.Task] = set()

    async def initialize(self):
        """初始化应用程序组件"""
        self.config_manager = ConfigManager(self.config_path)
        self.config_manager.load_config()
        global_config = self.config_manager.get_global_config()

        self._configure_logging(global_config)
        self.logger = get_logger('main')
        self.logger.info("开始初始化 Bot Keeper")

        self.store = create_store(global_config.get('database'))
        await self.store.initialize()

        self.prober = HttpProber(
            timeout=global_config['probe_timeout'],
            user_agent=global_config.get('user_agent') or DEFAULT_USER_AGENT
        )
        self.dispatcher = NotificationDispatcher(
            channel_options={'email': self.config_manager.get_smtp_config()}
        )
        self.pipeline = MonitorPipeline(
            self.store,
            self.prober,
            self.dispatcher,
            max_concurrent_probes=global_config['max_concurrent_probes']
        )
        await self.pipeline.sync_config(
            self.config_manager.get_projects(),
            self.config_manager.get_channel_configs()
        )

        self.tick_scheduler = TickScheduler(self.pipeline, global_config['tick_interval'])
        self.keepalive = self._create_keepalive(self.config_manager.get_keepalive_config())

        self.config_watcher = ConfigWatcher(self.config_manager, loop=asyncio.get_running_loop())
        self.config_watcher.add_change_callback(self._on_config_changed_callback)

        self.logger.info("应用程序组件初始化完成")

    def _configure_logging(self, global_config: Dict[str, Any]):
        log_config = {
            'log_level': global_config.get('log_level', 'INFO'),
            'enable_console': True,
            'log_file': global_config.get('log_file'),
        }
        if global_config.get('log_file'):
            log_config['max_file_size'] = global_config.get('max_log_size', 10 * 1024 * 1024)
            log_config['backup_count'] = global_config.get('log_backup_count', 5)

        log_config.update({k: v for k, v in self.log_overrides.items() if v})
        log_manager.configure(log_config)

    @staticmethod
    def _create_keepalive(keepalive_config: Dict[str, Any]) -> Optional[KeepAliveClient]:
        if not keepalive_config.get('enabled'):
            return None
        policy = RetryPolicy(
            max_retries=keepalive_config.get('max_retries', 3),
            retry_delay=keepalive_config.get('retry_delay', 5.0)
        )
        return KeepAliveClient(
            keepalive_config['base_url'],
            endpoints=keepalive_config.get('endpoints'),
            interval=keepalive_config.get('interval', 240),
            policy=policy
        )

    def _on_config_changed_callback(self, old_config: Dict[str, Any], new_config: Dict[str, Any]):
        """配置文件变更回调，在事件循环线程中执行"""
        self.logger.info("检测到配置文件变更，重新同步项目和通知设置")

        global_config = self.config_manager.get_global_config()
        self._configure_logging(global_config)
        self.dispatcher.channel_options['email'] = self.config_manager.get_smtp_config()
        self.tick_scheduler.update_interval(global_config['tick_interval'])

        task = asyncio.ensure_future(self._resync())
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)

    async def _resync(self):
        try:
            await self.pipeline.sync_config(
                self.config_manager.get_projects(),
                self.config_manager.get_channel_configs()
            )
        except BotKeeperError as e:
            self.logger.error(f"同步配置失败: {e.format_error()}")

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return task

    async def start(self):
        """启动应用程序并等待关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动 Bot Keeper")

            server = self.config_manager.get_global_config()['server']
            app = create_app(self.pipeline, self.dispatcher)
            self.runner = await start_http_api(app, server['host'], server['port'])

            self.config_watcher.start_watching()
            self._spawn(self.tick_scheduler.start())
            if self.keepalive:
                self._spawn(self.keepalive.run_forever())

            self.logger.info("Bot Keeper 启动完成")
            await self.shutdown_event.wait()
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序"""
        if not self.is_running:
            return

        self.logger.info("正在停止 Bot Keeper...")
        self.is_running = False

        if self.tick_scheduler:
            await self.tick_scheduler.stop()
        if self.keepalive:
            await self.keepalive.stop()
        if self.config_watcher:
            self.config_watcher.stop_watching()

        for task in self.background_tasks:
            if not task.done():
                task.cancel()
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)
        self.background_tasks.clear()

        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        if self.store:
            await self.store.close()

        self.logger.info("Bot Keeper 已停止")
        log_manager.cleanup()

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        status = {
            'is_running': self.is_running,
            'config_path': self.config_path,
            'background_tasks_count': len(self.background_tasks),
        }
        if self.pipeline:
            status['pipeline'] = self.pipeline.get_status()
        return status


# 全局应用程序实例
app: Optional[BotKeeperApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})")

    if app:
        app.shutdown()
    else:
        print("应用程序未初始化，直接退出")
        sys.exit(0)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='bot-keeper',
        description='Bot Keeper - 监控项目可达性并在状态变化时发送通知',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                              # 启动 HTTP 服务和定时检测
  %(prog)s --validate config.yaml                   # 验证配置文件格式
  %(prog)s --tick-once config.yaml                  # 执行一轮检测后退出
  %(prog)s --probe https://example.com              # 探测单个地址
  %(prog)s --test-notification webhook config.yaml  # 发送测试通知

支持的通知渠道:
  - webhook
  - email
  - chat

配置文件格式请参考 examples/config.example.yaml
        """
    )

    parser.add_argument('config_file', nargs='?', help='YAML配置文件路径')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--validate', action='store_true', help='验证配置文件格式并退出')
    parser.add_argument('--tick-once', action='store_true', help='执行一轮检测后退出')
    parser.add_argument('--probe', metavar='URL', help='探测单个地址后退出，不需要配置文件')
    parser.add_argument('--test-notification', metavar='TYPE',
                        help='使用配置文件中的渠道设置发送测试通知后退出')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='设置日志级别（覆盖配置文件设置）')
    parser.add_argument('--log-file', help='日志文件路径（覆盖配置文件设置）')

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Returns:
        验证是否成功
    """
    print(f"正在验证配置文件: {config_path}")

    if not os.path.exists(config_path):
        print(f"❌ 配置文件不存在: {config_path}")
        return False

    try:
        config_manager = ConfigManager(config_path)
        config_manager.load_config()
    except ConfigError as e:
        print(f"❌ 配置文件验证失败: {e}")
        return False

    projects = config_manager.get_projects()
    channels = config_manager.get_channel_configs()

    print("✅ 配置文件验证成功!")
    print(f"   - 项目数量: {len(projects)}")
    print(f"   - 通知渠道数量: {len(channels)}")

    if projects:
        print("   - 监控的项目:")
        for project in projects:
            flag = '' if project.enabled else ' [已停用]'
            print(f"     * {project.name} ({project.url}){flag}")

    if channels:
        print("   - 通知渠道:")
        for channel in channels:
            state = '启用' if channel.enabled else '停用'
            print(f"     * {channel.channel_type} ({state})")

    return True


async def run_tick_once(config_path: str) -> bool:
    """执行一轮检测

    Returns:
        本轮所有项目是否都完成了检测
    """
    print(f"正在执行检测: {config_path}")
    bot = BotKeeperApp(config_path)
    try:
        await bot.initialize()
        report = await bot.pipeline.run_tick('cli')
    except BotKeeperError as e:
        print(f"❌ 检测失败: {e.format_error()}")
        return False
    finally:
        if bot.store:
            await bot.store.close()

    if not report.success:
        print(f"❌ 检测失败: {report.error}")
        return False

    print(f"✅ 检测完成，共检测 {len(report.results)} 个项目:")
    for cycle in report.results:
        if not cycle.ok:
            print(f"   ❌ {cycle.project_id}: 检测中止 - {cycle.error}")
        elif cycle.probe.is_success:
            print(f"   ✅ {cycle.project_id}: 在线 ({cycle.probe.status_code}, {cycle.probe.latency_ms}ms)")
        else:
            print(f"   ❌ {cycle.project_id}: 离线 - {cycle.probe.error_message}")
        if cycle.transition:
            print(f"      状态变化: {cycle.transition.previous_status.value} -> "
                  f"{cycle.transition.new_status.value}")

    return all(cycle.ok for cycle in report.results)


async def run_probe(url: str) -> bool:
    """探测单个地址并打印结果"""
    result = await HttpProber().probe(url)
    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return result.is_success


async def run_test_notification(config_path: str, channel_type: str) -> bool:
    """使用配置文件中的渠道设置发送测试通知"""
    config_manager = ConfigManager(config_path)
    try:
        config = config_manager.load_config()
    except ConfigError as e:
        print(f"❌ 配置文件无效: {e.format_error()}")
        return False

    settings = (config.get('notifications') or {}).get(channel_type)
    if settings is None:
        print(f"❌ 配置文件中没有 {channel_type} 渠道")
        return False

    dispatcher = NotificationDispatcher(channel_options={'email': config_manager.get_smtp_config()})
    try:
        result = await dispatcher.send_test(channel_type, settings)
    except ValidationError as e:
        print(f"❌ 测试通知参数无效: {e.message}")
        return False

    outcome = result.outcomes.get(channel_type)
    if outcome and outcome.status.value == 'delivered':
        print(f"✅ 测试通知已发送: {channel_type}")
        return True

    print(f"❌ 测试通知发送失败: {channel_type} ({outcome.error if outcome else '未尝试'})")
    return False


async def main():
    """主函数"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args()

    if args.probe:
        success = await run_probe(args.probe)
        sys.exit(0 if success else 1)

    if not args.config_file:
        parser.print_help()
        sys.exit(1)

    config_path = args.config_file
    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        sys.exit(1)

    if args.validate:
        sys.exit(0 if validate_config_file(config_path) else 1)

    if args.test_notification:
        success = await run_test_notification(config_path, args.test_notification)
        sys.exit(0 if success else 1)

    if args.tick_once:
        success = await run_tick_once(config_path)
        sys.exit(0 if success else 1)

    try:
        app = BotKeeperApp(config_path, log_overrides={
            'log_level': args.log_level,
            'log_file': args.log_file,
        })

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await app.initialize()

        print(f"Bot Keeper v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()

    except KeyboardInterrupt:
        print("\n用户中断程序")
    except ConfigError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    except BotKeeperError as e:
        print(f"Bot Keeper 错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    finally:
        if app:
            await app.stop()


def run():
    """命令行入口"""
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    asyncio.run(main())


if __name__ == "__main__":
    run()
