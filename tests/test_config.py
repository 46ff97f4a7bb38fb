from stockroom import config
from stockroom.config import EnvReader


def test_env_reader_parses_typed_values():
    reader = EnvReader({
        'RETRIES': ' 7 ',
        'BACKOFF': '0.25',
        'ENABLED': 'Yes',
        'DISABLED': 'off',
        'BLANK': '   ',
    })
    assert reader.int('RETRIES') == 7
    assert reader.float('BACKOFF') == 0.25
    assert reader.bool('ENABLED') is True
    assert reader.bool('DISABLED', True) is False
    assert reader.str('BLANK', 'fallback') == 'fallback'
    assert reader.warnings == []


def test_env_reader_warns_and_falls_back():
    reader = EnvReader({'RETRIES': 'many', 'BACKOFF': 'slow', 'ENABLED': 'maybe'})
    assert reader.int('RETRIES', 5) == 5
    assert reader.float('BACKOFF', 0.01) == 0.01
    assert reader.bool('ENABLED', True) is True
    assert len(reader.warnings) == 3
    assert "RETRIES expected integer" in reader.warnings[0]


def test_retry_budget_is_at_least_one():
    reader = EnvReader({'FEFO_MAX_RETRIES': '0'})
    assert config._resolve_retry_budget(reader) == 1
    assert reader.warnings


def test_postgres_scheme_is_normalized():
    assert config._normalize_db_url('postgres://u:p@db/stock') == 'postgresql://u:p@db/stock'
    assert config._normalize_db_url('sqlite:///x.db') == 'sqlite:///x.db'
    assert config._normalize_db_url(None) is None


def test_config_map_defaults():
    assert set(config.config_map) == {'development', 'testing', 'staging', 'production'}
    testing = config.config_map['testing']
    assert testing.RATELIMIT_ENABLED is False
    assert testing.FEFO_RETRY_BACKOFF_SECONDS == 0.0
    assert config.BaseConfig.DEFAULT_PAYMENT_METHOD == 'cash'


def test_app_uses_sqlite_busy_timeout(app):
    options = app.config['SQLALCHEMY_ENGINE_OPTIONS']
    assert options['connect_args']['check_same_thread'] is False
    assert 'pool_size' not in options
