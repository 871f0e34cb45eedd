from dockplan import settings
from dockplan.model import ResourceBudget


def test_budget_from_explicit_values(monkeypatch):
    monkeypatch.setattr(settings, "CPU_BUDGET", None)
    monkeypatch.setattr(settings, "MEMORY_BUDGET", None)
    assert settings.budget_from() is None
    assert settings.budget_from(cpu="2") == ResourceBudget(cpu=2.0, memory=None)


def test_budget_from_environment(monkeypatch):
    monkeypatch.setattr(settings, "CPU_BUDGET", "500m")
    monkeypatch.setattr(settings, "MEMORY_BUDGET", "1G")
    assert settings.budget_from() == ResourceBudget(cpu=0.5, memory=1024 ** 3)
    assert settings.budget_from(memory="2G").memory == 2 * 1024 ** 3
