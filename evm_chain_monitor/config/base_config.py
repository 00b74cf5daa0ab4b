import yaml
import os
from typing import Dict, Any, Optional, List

DEFAULT_CONFIG_PATH = os.environ.get("EVM_MONITOR_CONFIG", "config.yml")


def _load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Optional[Dict[str, Any]]:
    """
    内部函数：加载并解析 YAML 配置文件。

    Args:
        config_path: 配置文件路径

    Returns:
        配置字典或 None（如果加载失败）
    """
    # 如果是相对路径，先查找当前工作目录，再查找项目根目录
    if not os.path.isabs(config_path) and not os.path.exists(config_path):
        current_dir = os.path.dirname(os.path.abspath(__file__))
        project_root = os.path.dirname(os.path.dirname(current_dir))
        config_path = os.path.join(project_root, config_path)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
        if config_data is not None and not isinstance(config_data, dict):
            print(f"Error: Config file {config_path} must contain a mapping. Using default configuration.")
            return None
        return config_data
    except FileNotFoundError:
        print(f"Warning: Config file not found at {config_path}. Using default configuration.")
        return None
    except yaml.YAMLError as exc:
        print(f"Error parsing YAML file: {exc}. Using default configuration.")
        return None


class AppConfig:
    """进程级配置 - 对 config.yml 各个段落的只读访问"""

    def __init__(self, data: Optional[Dict[str, Any]] = None, path: Optional[str] = None):
        self.data = data or {}
        self.path = path

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'AppConfig':
        path = config_path or DEFAULT_CONFIG_PATH
        return cls(_load_config(path), path)

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name) or {}
        return section if isinstance(section, dict) else {}

    def get_database_config(self) -> Dict[str, Any]:
        """获取数据库配置，未配置时视为禁用"""
        db_config = self._section('database')
        return {
            'enabled': bool(db_config.get('enabled', bool(db_config))),
            'host': db_config.get('host', 'localhost'),
            'port': db_config.get('port', 5432),
            'user': db_config.get('user', 'postgres'),
            'password': db_config.get('password', ''),
            'dbname': db_config.get('dbname', 'postgres'),
            'sslmode': db_config.get('sslmode', 'disable'),
            'pool_size': db_config.get('pool_size', 10),
            'max_overflow': db_config.get('max_overflow', 20),
        }

    def get_logging_config(self) -> Dict[str, Any]:
        logging_config = self._section('logging')
        return {
            'level': logging_config.get('level', 'INFO'),
            'file': logging_config.get('file'),
        }

    def get_monitor_config(self) -> Dict[str, Any]:
        """监控调优参数（批大小、限速、重试等）"""
        return dict(self._section('monitor'))

    def get_chain_configs(self) -> List[Dict[str, Any]]:
        """静态链配置列表（数据库禁用时使用）"""
        chains = self.data.get('chains') or []
        if isinstance(chains, dict):
            # 兼容旧格式：以链名称为键的映射
            rows = []
            for index, (chain_name, chain_config) in enumerate(chains.items(), 1):
                row = {'id': index, 'chain': chain_name}
                row.update(chain_config or {})
                rows.append(row)
            return rows
        return [dict(row) for row in chains if isinstance(row, dict)]

    def get_rabbitmq_config(self) -> Dict[str, Any]:
        """
        获取 RabbitMQ 完整配置

        Returns:
            RabbitMQ 配置字典
        """
        rabbitmq_config = self._section('rabbitmq')
        return {
            # 连接配置
            'host': rabbitmq_config.get('host', 'localhost'),
            'port': rabbitmq_config.get('port', 5672),
            'username': rabbitmq_config.get('username', 'guest'),
            'password': rabbitmq_config.get('password', 'guest'),
            'virtual_host': rabbitmq_config.get('virtual_host', '/'),
            'heartbeat': rabbitmq_config.get('heartbeat', 600),
            'connection_timeout': rabbitmq_config.get('connection_timeout', 30),
            'exchange_name': rabbitmq_config.get('exchange_name', 'chain_events'),
            'exchange_type': rabbitmq_config.get('exchange_type', 'topic'),
            # 启用状态
            'enabled': rabbitmq_config.get('enabled', False),
        }

    def get_api_config(self) -> Dict[str, Any]:
        api_config = self._section('api')
        return {
            'enabled': api_config.get('enabled', True),
            'host': api_config.get('host', '0.0.0.0'),
            'port': int(api_config.get('port', 3000)),
        }


if __name__ == "__main__":
    app_config = AppConfig.load()
    print(f"--- {app_config.path} ---")
    for row in app_config.get_chain_configs():
        print(f"Chain: {row.get('chain')}")
        for key, value in row.items():
            print(f"  {key}: {value}")
