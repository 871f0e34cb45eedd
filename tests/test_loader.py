"""Tests for loading stacks from Python and JSON files."""
import json
import textwrap

import pytest

from dockplan.errors import SpecLoadError
from dockplan.loader import load_stack, stack_from_dict, stack_to_dict
from dockplan.model import ResourceBudget


STACK_DOC = {
    "stages": [
        {"name": "deps", "base": "python:3.12-slim", "instructions": ["RUN pip install -r requirements.txt"],
         "files": ["requirements.txt"]},
        {"name": "app", "base": "deps", "instructions": ["COPY . /app"], "args": {"ENV": "prod"}},
    ],
    "services": [
        {"name": "db", "healthcheck": {"test": ["CMD-SHELL", "pg_isready"], "interval": 1, "retries": 5},
         "limit": {"cpu": "500m", "memory": "512M"}},
        {"name": "api", "needs": ["db"], "build": "app", "limit": {"cpu": 1}},
    ],
    "budget": {"cpu": 2, "memory": "1G"},
}


class TestJsonStacks:
    def test_stack_from_dict(self):
        stack = stack_from_dict(STACK_DOC)
        assert [s.name for s in stack.stages] == ["deps", "app"]
        assert stack.stages[1].depends_on({"deps", "app"}) == ["deps"]

        db, api = stack.services
        assert db.healthcheck.test == ("CMD-SHELL", "pg_isready")
        assert db.healthcheck.retries == 5
        assert db.limit.memory == 512 * 1024 ** 2
        assert api.build == "app"
        assert stack.budget == ResourceBudget(cpu=2.0, memory=1024 ** 3)

    def test_invalid_document(self):
        with pytest.raises(SpecLoadError, match="stages"):
            stack_from_dict({"stages": [{"instructions": ["RUN a"]}]})

    def test_negative_retries_rejected(self):
        doc = {"services": [{"name": "db", "healthcheck": {"test": "true", "retries": -1}}]}
        with pytest.raises(SpecLoadError):
            stack_from_dict(doc)

    def test_bad_quantity(self):
        with pytest.raises(SpecLoadError, match="memory"):
            stack_from_dict({"services": [{"name": "db", "limit": {"memory": "lots"}}]})

    def test_export_reloads_to_same_stack(self):
        stack = stack_from_dict(STACK_DOC)
        again = stack_from_dict(stack_to_dict(stack))
        assert again.stages == stack.stages
        assert again.services == stack.services
        assert again.budget == stack.budget

    def test_load_json_file(self, tmp_path):
        path = tmp_path / "app_stack.json"
        path.write_text(json.dumps(STACK_DOC))
        stack = load_stack(path)
        assert stack.source == str(path.resolve())
        assert len(stack.services) == 2

    def test_broken_json(self, tmp_path):
        path = tmp_path / "app_stack.json"
        path.write_text("{")
        with pytest.raises(SpecLoadError, match="invalid JSON"):
            load_stack(path)


class TestPythonStacks:
    def test_functions(self, tmp_path):
        path = tmp_path / "dockplan_stack.py"
        path.write_text(textwrap.dedent("""
            from dockplan import ResourceBudget, build, compose, service, stage

            def stages():
                return build(stage("deps", "RUN install"))

            def services():
                return compose(service("db"), service("api", needs=["db"]))

            BUDGET = ResourceBudget(cpu=1)
        """))
        stack = load_stack(path)
        assert [s.name for s in stack.stages] == ["deps"]
        assert [s.name for s in stack.services] == ["db", "api"]
        assert stack.budget.cpu == 1

    def test_constants(self, tmp_path):
        path = tmp_path / "stack.py"
        path.write_text('from dockplan import stage\nSTAGES = [stage("a", "RUN a")]\n')
        stack = load_stack(path)
        assert stack.services == []
        assert stack.budget is None

    def test_empty_stack_file(self, tmp_path):
        path = tmp_path / "stack.py"
        path.write_text("X = 1\n")
        with pytest.raises(SpecLoadError, match="neither stages nor services"):
            load_stack(path)

    def test_wrong_types(self, tmp_path):
        path = tmp_path / "stack.py"
        path.write_text('STAGES = ["not a stage"]\n')
        with pytest.raises(SpecLoadError, match="List\\[Stage\\]"):
            load_stack(path)

    def test_bad_budget(self, tmp_path):
        path = tmp_path / "stack.py"
        path.write_text('from dockplan import stage\nSTAGES = [stage("a", "RUN a")]\nBUDGET = {"cpu": 1}\n')
        with pytest.raises(SpecLoadError, match="BUDGET"):
            load_stack(path)


def test_missing_and_unsupported_files(tmp_path):
    with pytest.raises(SpecLoadError, match="not found"):
        load_stack(tmp_path / "nope.py")

    path = tmp_path / "stack.yaml"
    path.write_text("stages: []\n")
    with pytest.raises(SpecLoadError, match="unsupported"):
        load_stack(path)
