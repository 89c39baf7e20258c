from datetime import timedelta
from pathlib import Path

import pytest

from backup_scheduler.config import load_config, parse_config, substitute_env_vars
from backup_scheduler.domain import DatabaseKind
from backup_scheduler.errors import ConfigError

CONFIG = """
global:
  slack:
    bot_token: ${SLACK_TOKEN}
    channel_id: C000
  schedule: 6h
  retention: 14d
  timezone: Europe/Berlin
  max_parallel_strategies: 4
  retry:
    max_attempts: 5
  timeout:
    backup: 1h
  s3:
    bucket: my-backups
    endpoint: http://minio:9000
    compression: none

strategies:
  - name: main-db
    database_url: postgres://user:pw@db:5432/main
  - name: shop
    database_type: mariadb
    database_url: mysql://shop:pw@mariadb:3306/shop
    schedule: "0 3 * * *"
    retention: 7d
    max_attempts: 1
    slack:
      channel_id: C999
"""


def test_parse_full_config():
    settings = parse_config(CONFIG, environ={"SLACK_TOKEN": "xoxb-token"})
    defaults = settings.defaults

    assert defaults.slack.bot_token == "xoxb-token"
    assert defaults.schedule == "6h"
    assert defaults.retention == timedelta(days=14)
    assert defaults.timezone == "Europe/Berlin"
    assert defaults.max_parallel == 4
    assert defaults.retry.max_attempts == 5
    assert defaults.timeout.backup == timedelta(hours=1)
    assert defaults.timeout.upload == timedelta(minutes=10)
    assert defaults.s3.bucket == "my-backups"
    assert defaults.s3.compression == "none"

    main, shop = settings.strategies
    assert main.database_type == DatabaseKind.POSTGRES
    assert main.schedule is None
    assert shop.database_type == DatabaseKind.MARIADB
    assert shop.retention == timedelta(days=7)
    assert shop.slack.channel_id == "C999"


def test_defaults():
    settings = parse_config("strategies: []", environ={})
    defaults = settings.defaults

    assert defaults.log_level == "info"
    assert defaults.schedule == "1d"
    assert defaults.retention == timedelta(days=30)
    assert defaults.timezone == "UTC"
    assert defaults.temp_dir == Path("/tmp/db-backup")
    assert defaults.max_parallel == 2
    assert defaults.retry.max_attempts == 3
    assert defaults.timeout.backup == timedelta(minutes=30)
    assert defaults.timeout.cleanup == timedelta(minutes=5)
    assert defaults.s3.compression == "gzip"
    assert defaults.monitoring.metrics.port == 8080
    assert defaults.monitoring.metrics.path == "/metrics"
    assert defaults.monitoring.health_check.path == "/health"
    assert defaults.execute_on_startup is False


def test_unset_placeholders_are_kept():
    assert substitute_env_vars("url: ${MISSING}/x", environ={}) == "url: ${MISSING}/x"
    assert substitute_env_vars("url: ${HOST}/x", environ={"HOST": "db"}) == "url: db/x"


def test_slack_environment_overrides():
    settings = parse_config(CONFIG, environ={"SLACK_BOT_TOKEN": "xoxb-env", "SLACK_CHANNEL_ID": "CENV"})
    assert settings.defaults.slack.bot_token == "xoxb-env"
    assert settings.defaults.slack.channel_id == "CENV"


@pytest.mark.parametrize("text", [
    "global: [1, 2",
    "- just a list",
    "strategies:\n  - name: a\n",
    "strategies:\n  - name: a\n    database_url: x\n    database_type: oracle\n",
    "global:\n  retention: forever\n",
    "global:\n  retention: 0s\n",
    "global:\n  timeout:\n    upload: 0m\n",
    "strategies:\n  - name: a\n    database_url: x\n    retention: 0d\n",
    "strategies:\n  - name: a\n    database_url: x\n  - name: a\n    database_url: y\n",
])
def test_invalid_config(text):
    with pytest.raises(ConfigError):
        parse_config(text, environ={})


def test_zero_retention_is_rejected():
    with pytest.raises(ConfigError, match="duration must be positive"):
        parse_config("global:\n  retention: 0s\n", environ={})


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    assert [s.name for s in load_config(path, environ={}).strategies] == ["main-db", "shop"]


def test_load_missing_config(tmp_path):
    with pytest.raises(ConfigError, match="Failed to read"):
        load_config(tmp_path / "nope.yaml")
