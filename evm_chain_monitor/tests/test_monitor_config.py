"""
配置解析测试
"""

import pytest

from evm_chain_monitor.config.base_config import AppConfig
from evm_chain_monitor.config.monitor_config import DEFAULT_POLL_INTERVAL_MS, MonitorConfig, MonitorSettings
from evm_chain_monitor.core.exceptions import ConfigError
from evm_chain_monitor.db.config_store import StaticConfigStore


class TestMonitorConfig:

    def test_database_row(self):
        config = MonitorConfig.from_dict({
            'id': '2', 'chain': 'BSC', 'chain_id': 56, 'symbol': 'BNB',
            'rpc_http': 'https://bsc-dataseed1.binance.org/', 'rpc_ws': '',
            'internal_rpc_http': None, 'internal_rpc_ws': None,
            'interval': 1000, 'full_tx': 1, 'enable': 0,
        })

        assert config.id == 2
        assert config.chain_id == '56'
        assert config.rpc_ws is None
        assert config.interval == 1000
        assert config.full_tx is True
        assert config.enabled is False

    def test_camel_case_aliases(self):
        config = MonitorConfig.from_dict({
            'id': 1, 'chain': 'ETH', 'rpcWs': 'wss://eth', 'pollIntervalMs': 2000, 'fullTx': 'false',
        })

        assert config.rpc_ws == 'wss://eth'
        assert config.interval == 2000
        assert config.full_tx is False

    def test_defaults(self):
        config = MonitorConfig.from_dict({'id': 1, 'chain': 'ETH', 'interval': 0})

        assert config.interval == DEFAULT_POLL_INTERVAL_MS
        assert config.poll_interval_seconds == 3.0
        assert config.full_tx is True
        assert config.enabled is True

    @pytest.mark.parametrize('row', [
        {'chain': 'ETH'},
        {'id': 1},
        {'id': 'abc', 'chain': 'ETH'},
        {'id': 1, 'chain': 'ETH', 'interval': 'fast'},
        ['not', 'a', 'dict'],
    ])
    def test_invalid_rows(self, row):
        with pytest.raises(ConfigError):
            MonitorConfig.from_dict(row)

    def test_endpoint_priority(self):
        base = {'id': 1, 'chain': 'ETH', 'rpc_http': 'http://a', 'internal_rpc_http': 'http://b'}
        assert MonitorConfig.from_dict(base).resolve_rpc_url() == 'http://b'
        assert MonitorConfig.from_dict({**base, 'rpc_ws': 'wss://c'}).resolve_rpc_url() == 'wss://c'
        assert MonitorConfig.from_dict(
            {**base, 'rpc_ws': 'wss://c', 'internal_rpc_ws': 'ws://d'}).resolve_rpc_url() == 'ws://d'
        assert MonitorConfig.from_dict({'id': 1, 'chain': 'ETH'}).resolve_rpc_url() is None

    def test_push_requires_socket_scheme(self):
        assert MonitorConfig.from_dict({'id': 1, 'chain': 'ETH', 'rpc_ws': 'wss://x'}).supports_push()
        assert not MonitorConfig.from_dict({'id': 1, 'chain': 'ETH', 'rpc_ws': 'https://x'}).supports_push()
        assert not MonitorConfig.from_dict({'id': 1, 'chain': 'ETH', 'rpc_http': 'http://x'}).supports_push()

    def test_changed_fields_ignore_enabled(self):
        old = MonitorConfig.from_dict({'id': 1, 'chain': 'ETH', 'rpc_http': 'http://a'})
        new = MonitorConfig.from_dict({'id': 1, 'chain': 'ETH', 'rpc_http': 'http://b', 'enable': 0})

        assert new.changed_fields(old) == ('rpc_http',)
        assert old.is_changed(new)
        assert not old.is_changed(old)


class TestMonitorSettings:

    def test_defaults(self):
        settings = MonitorSettings.from_dict(None)

        assert settings.batch_size == 5
        assert settings.batch_pause == 0.2
        assert settings.max_connection_errors == 10
        assert settings.restart_delay == 5.0
        assert settings.receipt_retry_attempts == 3
        assert settings.receipt_retry_delay == 1.0

    def test_millisecond_keys(self):
        settings = MonitorSettings.from_dict({
            'batch_size': 10, 'batch_pause_ms': 50, 'restart_delay_ms': 1000, 'receipt_retry_delay_ms': 0,
        })

        assert settings.batch_size == 10
        assert settings.batch_pause == 0.05
        assert settings.restart_delay == 1.0
        assert settings.receipt_retry_delay == 0.0

    @pytest.mark.parametrize('section', [
        {'restart_delay': 5000},
        {'batch_pause': 200},
        {'receipt_retry_delay': 1000},
    ])
    def test_time_settings_require_millisecond_keys(self, section):
        with pytest.raises(ConfigError, match='_ms'):
            MonitorSettings.from_dict(section)

    def test_invalid_millisecond_value(self):
        with pytest.raises(ConfigError):
            MonitorSettings.from_dict({'restart_delay_ms': 'soon'})

    def test_invalid_batch_size(self):
        with pytest.raises(ConfigError):
            MonitorSettings.from_dict({'batch_size': 0})


class TestAppConfig:

    def test_missing_file_uses_defaults(self, tmp_path):
        app_config = AppConfig.load(str(tmp_path / 'missing.yml'))

        assert app_config.get_database_config()['enabled'] is False
        assert app_config.get_api_config() == {'enabled': True, 'host': '0.0.0.0', 'port': 3000}
        assert app_config.get_rabbitmq_config()['enabled'] is False
        assert app_config.get_chain_configs() == []

    def test_load_yaml(self, tmp_path):
        path = tmp_path / 'config.yml'
        path.write_text(
            "database:\n"
            "  host: db\n"
            "  user: monitor\n"
            "  dbname: chains\n"
            "logging:\n"
            "  level: DEBUG\n"
            "monitor:\n"
            "  batch_size: 8\n"
            "chains:\n"
            "  - id: 1\n"
            "    chain: ETH\n"
            "    rpc_http: https://eth\n"
            "  - id: 2\n"
            "    chain: BSC\n"
            "    rpc_http: https://bsc\n"
            "    enable: 0\n"
            "api:\n"
            "  port: '8080'\n",
            encoding='utf-8',
        )

        app_config = AppConfig.load(str(path))

        db_config = app_config.get_database_config()
        assert db_config['enabled'] is True
        assert db_config['host'] == 'db'
        assert db_config['port'] == 5432
        assert app_config.get_logging_config()['level'] == 'DEBUG'
        assert MonitorSettings.from_dict(app_config.get_monitor_config()).batch_size == 8
        assert app_config.get_api_config()['port'] == 8080
        assert [row['chain'] for row in app_config.get_chain_configs()] == ['ETH', 'BSC']

    def test_legacy_chain_mapping(self):
        app_config = AppConfig({'chains': {'eth': {'rpc_http': 'https://eth'}, 'bsc': None}})

        rows = app_config.get_chain_configs()

        assert rows == [{'id': 1, 'chain': 'eth', 'rpc_http': 'https://eth'}, {'id': 2, 'chain': 'bsc'}]


class TestStaticConfigStore:

    async def test_invalid_rows_are_skipped(self):
        store = StaticConfigStore([
            {'id': 1, 'chain': 'ETH', 'rpc_http': 'https://eth'},
            {'chain': 'NOID'},
            {'id': 2, 'chain': 'BSC', 'rpc_http': 'https://bsc', 'enable': 0},
        ])

        enabled = await store.list_enabled_configs()

        assert [config.id for config in enabled] == [1]
        assert (await store.get_config_by_id(2)).enabled is False

    async def test_set_enabled(self):
        store = StaticConfigStore([{'id': 1, 'chain': 'ETH'}])

        assert await store.set_enabled(1, False) is True
        assert await store.list_enabled_configs() == []
        assert await store.set_enabled(7, True) is False
