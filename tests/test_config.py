from vacation_relay.config import DEFAULT_RELAY_PORT, load_settings

ENV_VARS = [
    "RELAY_HOST", "RELAY_PORT", "PRESENCE_HOST", "PRESENCE_PORT", "DB_BACKEND", "DB_PATH",
    "DB_HOST", "DB_PORT", "DB_USER", "DB_PASSWORD", "DB_DATABASE", "RELAY_DB_TIMEOUT", "LOG_LEVEL",
]


def _clear(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)
    s = load_settings()
    assert s.relay_port == DEFAULT_RELAY_PORT == 8080
    assert s.db_backend == "sqlite"
    assert s.db_timeout is None
    assert s.log_level == "INFO"


def test_env_overrides(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("RELAY_PORT", "9100")
    monkeypatch.setenv("DB_BACKEND", "MySQL")
    monkeypatch.setenv("DB_DATABASE", "vacations")
    monkeypatch.setenv("RELAY_DB_TIMEOUT", "3")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = load_settings()
    assert s.relay_port == 9100
    assert s.db_backend == "mysql"
    assert s.db_name == "vacations"
    assert s.db_timeout == 3.0
    assert s.log_level == "DEBUG"


def test_bad_numbers_fall_back(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("RELAY_PORT", "eighty")
    monkeypatch.setenv("RELAY_DB_TIMEOUT", "-1")
    s = load_settings()
    assert s.relay_port == DEFAULT_RELAY_PORT
    assert s.db_timeout is None
