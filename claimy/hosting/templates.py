"""Server templates (eggs) and resource limits applied to every claimed server"""

from dataclasses import dataclass, field
import logging
from pathlib import Path

from pydantic import TypeAdapter

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthcheckConfig:
    type: str = "tcp"
    port_env: str = "SERVER_PORT"
    timeout_sec: float = 5
    retries: int = 3
    retry_delay_sec: float = 2


@dataclass(frozen=True)
class ServerTemplate:
    egg_id: int
    docker_image: str
    startup_command: str
    environment: dict[str, str] = field(default_factory=dict)
    healthcheck: HealthcheckConfig = field(default_factory=HealthcheckConfig)
    use_resource_config: bool = True


@dataclass(frozen=True)
class ResourceConfig:
    memory: int = 1024
    disk: int = 10240
    cpu: int = 100
    swap: int = 0
    io: int = 500
    databases: int = 2
    allocations: int = 1
    backups: int = 5

    def get_limits(self) -> dict[str, int]:
        return {
            "memory": self.memory,
            "swap": self.swap,
            "disk": self.disk,
            "io": self.io,
            "cpu": self.cpu,
        }

    def get_feature_limits(self) -> dict[str, int]:
        return {
            "databases": self.databases,
            "allocations": self.allocations,
            "backups": self.backups,
        }


DEFAULT_TEMPLATES = {
    "nodejs": ServerTemplate(
        egg_id=15,
        docker_image="ghcr.io/parkervcp/yolks:nodejs_18",
        startup_command="if [ -f package.json ]; then npm install; fi; node {{MAIN_FILE}}",
        environment={"MAIN_FILE": "index.js", "NODE_ENV": "production"},
    ),
    "python": ServerTemplate(
        egg_id=16,
        docker_image="ghcr.io/parkervcp/yolks:python_3.11",
        startup_command=(
            "if [ -f requirements.txt ]; then pip install -r requirements.txt; fi; "
            "python {{PY_FILE}}"
        ),
        environment={"PY_FILE": "app.py"},
    ),
}

_templates_adapter = TypeAdapter(dict[str, ServerTemplate])
_resources_adapter = TypeAdapter(ResourceConfig)


def load_templates(path: str | Path | None = None) -> dict[str, ServerTemplate]:
    """Load templates keyed by name from a JSON file, or the built in defaults"""
    if not path:
        return dict(DEFAULT_TEMPLATES)
    with open(path, "rb") as f:
        templates = _templates_adapter.validate_json(f.read())
    _LOGGER.info(f"Loaded server templates {sorted(templates)} from {path}")
    return templates


def load_resource_config(path: str | Path | None = None) -> ResourceConfig:
    if not path:
        return ResourceConfig()
    with open(path, "rb") as f:
        resources = _resources_adapter.validate_json(f.read())
    _LOGGER.info(f"Loaded resource configuration from {path}")
    return resources
