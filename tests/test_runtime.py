"""SLA config file loading, hot-reload fallback and the sweep scheduler."""

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from helpdesk.config import Settings
from helpdesk.core import ConfigurationException
from helpdesk.sla.infrastructure import SLAConfigManager, SLAScheduler

REPO_CONFIG = Path(__file__).resolve().parent.parent / "sla_config.yaml"


def test_shipped_config_file_is_valid():
    config = SLAConfigManager().load(REPO_CONFIG)

    assert config.get_at_risk_minutes("response") == 30
    assert config.at_risk_limit == 50
    urgent = next(p for p in config.default_policies if p.priority == "urgent")
    assert (urgent.response_minutes, urgent.resolution_minutes) == (15, 120)


def test_missing_file_uses_defaults(tmp_path):
    manager = SLAConfigManager()
    config = manager.load(tmp_path / "absent.yaml")

    assert len(config.default_policies) == 4
    manager.start_watching()
    assert manager.is_watching is False


def test_invalid_file_fails_initial_load(tmp_path):
    path = tmp_path / "sla.yaml"
    path.write_text("at_risk_minutes:\n  response: 0\n")

    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)

    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_reload_keeps_previous_config_on_error(tmp_path, caplog):
    path = tmp_path / "sla.yaml"
    path.write_text("at_risk_limit: 10\n")
    manager = SLAConfigManager()
    manager.load(path)

    path.write_text("at_risk_limit: [unclosed\n")
    assert manager.reload() is False
    assert manager.config.at_risk_limit == 10
    assert any("keeping previous configuration" in r.getMessage() for r in caplog.records)

    path.write_text("at_risk_limit: 20\n")
    assert manager.reload() is True
    assert manager.config.at_risk_limit == 20


def test_business_hours_flag_only_warns(tmp_path, caplog):
    path = tmp_path / "sla.yaml"
    path.write_text("business_hours_only: true\n")

    config = SLAConfigManager().load(path)

    assert config.business_hours_only is True
    assert any(r.levelname == "WARNING" and "business_hours_only" in r.getMessage() for r in caplog.records)


def test_config_before_load_is_an_error():
    with pytest.raises(RuntimeError):
        SLAConfigManager().config


async def test_scheduler_lifecycle():
    async def sweep():
        return None

    scheduler = SLAScheduler(interval_seconds=30)
    assert scheduler.next_run_at is None

    await scheduler.start(sweep)
    try:
        assert scheduler.is_running is True
        assert scheduler.next_run_at is not None
    finally:
        await scheduler.stop()

    assert scheduler.is_running is False
    assert scheduler.next_run_at is None
    await scheduler.stop()


@pytest.mark.parametrize("interval", [9, 61])
def test_sweep_interval_outside_staleness_bound_is_rejected(interval):
    with pytest.raises(ValidationError):
        Settings(sla_evaluation_interval=interval)


async def test_scheduler_runs_sweep_at_configured_interval():
    settings = Settings(sla_evaluation_interval=45)
    assert 10 <= Settings().sla_evaluation_interval <= 60

    async def sweep():
        return None

    scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
    await scheduler.start(sweep)
    try:
        assert scheduler.job.trigger.interval == timedelta(seconds=45)
    finally:
        await scheduler.stop()
    assert scheduler.job is None
