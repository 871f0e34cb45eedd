# dockplan_stack.py
# Stack for a small web app: a three-stage image build plus the services it runs with
from __future__ import annotations
from dockplan import ResourceBudget, build, compose, healthcheck, service, stage, stage_builder


def stages():
    return build(
        stage(
            "deps",
            "RUN pip install -r requirements.txt",
            base="python:3.12-slim",
            files=["requirements.txt"],
        ),
        stage_builder("app")
        .from_("deps")
        .run("COPY src/ /app/src/", "RUN python -m compileall /app/src")
        .with_files("src/**", "pyproject.toml")
        .with_args(APP_ENV="production")
        .build(),
        stage_builder("runtime")
        .from_("python:3.12-slim")
        .copy("app", "COPY --from=app /app /app")
        .run('CMD ["python", "-m", "app"]')
        .build(),
    )


def services():
    return compose(
        service(
            "db",
            healthcheck=healthcheck(["CMD-SHELL", "pg_isready -q"], interval=2, retries=10, start_period=5),
            cpu=1,
            memory="1G",
            memory_request="512M",
        ),
        service(
            "api",
            needs=["db"],
            build="runtime",
            healthcheck=healthcheck("curl -fsS http://localhost:8000/health", interval=2, retries=5),
            cpu="500m",
            memory="512M",
        ),
        service("web", needs=["api"], cpu="250m", memory="256M"),
    )


BUDGET = ResourceBudget(cpu=2.0, memory=2 * 1024 ** 3)
