"""Settings loading from YAML and environment."""

import pytest

from closeboard.core.config import ConfigLoader, Settings, get_config, reset_config

pytestmark = [pytest.mark.fast]


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


def test_settings_loads_from_yaml(tmp_path):
    yaml_path = tmp_path / "closeboard.yml"
    yaml_path.write_text("""
database_url: postgresql://localhost/closetest
api_token: s3cret
timezone: America/Chicago
fiscal_year_start_month: 7
mailer: smtp
smtp_host: mail.example.com
worker_id: reminder-1
unknown_key: ignored
""")
    cfg = get_config(config_path=yaml_path)
    assert cfg.database_url == "postgresql://localhost/closetest"
    assert cfg.api_token == "s3cret"
    assert cfg.timezone == "America/Chicago"
    assert cfg.fiscal_year_start_month == 7
    assert cfg.mailer == "smtp"
    assert cfg.smtp_host == "mail.example.com"
    assert cfg.worker_id == "reminder-1"
    assert get_config() is cfg


def test_worker_id_defaults_to_hostname(tmp_path):
    yaml_path = tmp_path / "closeboard.yml"
    yaml_path.write_text("database_url: postgresql://localhost/db\n")
    cfg = get_config(config_path=yaml_path)
    assert cfg.worker_id


def test_explicit_path_ignores_database_url_env(tmp_path):
    yaml_path = tmp_path / "closeboard.yml"
    yaml_path.write_text("database_url: postgresql://localhost/from_yaml\n")
    loader = ConfigLoader(env={"DATABASE_URL": "postgresql://localhost/from_env"})
    assert loader.load_from_yaml(yaml_path, apply_env_override=False).database_url.endswith("from_yaml")
    assert loader.load_from_yaml(yaml_path, apply_env_override=True).database_url.endswith("from_env")


def test_load_default_without_file_uses_env(tmp_path):
    loader = ConfigLoader(env={"CLOSEBOARD_CONFIG": str(tmp_path / "missing.yml"), "DATABASE_URL": "postgresql://x/y"})
    cfg = loader.load_default()
    assert cfg.database_url == "postgresql://x/y"
    assert cfg.api_token == ""
    assert cfg.drafter == "template"


def test_missing_explicit_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        get_config(config_path=tmp_path / "nope.yml")


def test_fiscal_month_is_validated():
    with pytest.raises(ValueError):
        Settings(fiscal_year_start_month=13)


def test_secrets_come_from_environment(tmp_path):
    yaml_path = tmp_path / "closeboard.yml"
    yaml_path.write_text("api_token: from-file\nsmtp_password: ''\n")
    env = {
        "CLOSEBOARD_CONFIG": str(yaml_path),
        "CLOSEBOARD_API_TOKEN": "from-env",
        "CLOSEBOARD_SMTP_PASSWORD": "pw",
        "CLOSEBOARD_ACCOUNTING_API_KEY": "",
    }
    cfg = ConfigLoader(env=env).load_default()
    assert cfg.api_token == "from-env"
    assert cfg.smtp_password == "pw"
    assert cfg.accounting_api_key == ""

    explicit = ConfigLoader(env=env).load_from_yaml(yaml_path, apply_env_override=False)
    assert explicit.api_token == "from-file"


def test_non_mapping_yaml_is_rejected(tmp_path):
    yaml_path = tmp_path / "closeboard.yml"
    yaml_path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError, match="must contain a mapping"):
        ConfigLoader(env={}).load_from_yaml(yaml_path, apply_env_override=True)


def test_timezone_is_validated():
    assert Settings(timezone="Europe/Berlin").timezone == "Europe/Berlin"
    with pytest.raises(ValueError, match="Unknown timezone"):
        Settings(timezone="Mars/Olympus")
