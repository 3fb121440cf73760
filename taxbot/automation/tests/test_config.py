"""Tests for the packaged Hydra configuration."""
from __future__ import annotations

from taxbot.automation.runtime import AutomationService
from taxbot.automation.store.memory import MemoryTaskStore
from taxbot.automation.tests.fakes import FakeGateway
from taxbot.integrations.email import MemoryOutbox


def test_packaged_config_builds_default_service(monkeypatch) -> None:
    monkeypatch.delenv("ETAX_API_URL", raising=False)
    from taxbot.utils.hydra_config.init import conf

    automation = conf.automation
    assert automation.timezone == "Asia/Ho_Chi_Minh"
    assert automation.processor.poll_interval == 30
    assert automation.gateway.base_url == "https://etax.gdt.gov.vn/api"

    service = AutomationService(automation, gateway=FakeGateway())

    assert isinstance(service.store, MemoryTaskStore)
    assert isinstance(service.email, MemoryOutbox)
    assert service.processor.poll_interval == 30
    assert service.calendar.upcoming_window_days == 7
