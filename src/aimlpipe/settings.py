"""
Настройки раннера.

Источники по приоритету: переменные окружения с префиксом AIMLPIPE_,
затем aimlpipe.toml в текущей директории.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from tempfile import gettempdir
from typing import Dict, Literal, Optional

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

LOGO = r"""
    _    ___ __  __ _          _
   / \  |_ _|  \/  | |    _ __ (_)_ __   ___
  / _ \  | || |\/| | |   | '_ \| | '_ \ / _ \
 / ___ \ | || |  | | |___| |_) | | |_) |  __/
/_/   \_\___|_|  |_|_____| .__/|_| .__/ \___|
                         |_|     |_|
"""


class Severity(str, Enum):
    """Уровни критичности находок сканеров (порядок важен)."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    def and_above(self) -> list[str]:
        levels = list(Severity)
        return [s.value for s in levels[levels.index(self):]]


DEFAULT_STAGE_TIMEOUTS: Dict[str, float] = {
    "default": 1800,
    "checkout": 600,
    "setup-environment": 600,
    "install-dependencies": 1800,
    "unit-tests": 1800,
    "dependency-audit": 900,
    "static-scan": 1200,
    "image-build": 2400,
    "sonarqube-analysis": 1800,
    "registry-push": 1200,
    "run-locally": 300,
}

QUALITY_GATE_TIMEOUT_MARGIN = 60


class Settings(BaseSettings):
    """Основные настройки раннера."""

    model_config = SettingsConfigDict(
        toml_file="aimlpipe.toml", env_prefix="AIMLPIPE_", extra="ignore"
    )

    # Рабочая директория: внутри неё каждый запуск получает свою временную папку
    workdir: Path = Path(gettempdir()) / "aimlpipe"
    cleanup_workspace: bool = True
    show_spinner: bool = False

    # Таблица сервисов: "standard" (8000/8100/...) или "aiml" (8000/8001/...)
    profile_set: Literal["standard", "aiml"] = "standard"

    stage_timeouts: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_STAGE_TIMEOUTS)
    )

    # SonarQube
    sonar_servers: Dict[str, str] = Field(
        default_factory=lambda: {"SonarQube-Server": "http://localhost:9000"}
    )
    sonar_token_credentials: str = "sonar-token"
    sonar_scanner_bin: str = "sonar-scanner"
    quality_gate_timeout: float = 600
    quality_gate_poll_interval: float = 5

    # Registry
    registry: Literal["dockerhub", "ecr"] = "dockerhub"
    aws_region: str = "ap-south-1"
    ecr_repository_prefix: str = "aiml"

    # Не задан: сканеры никогда не валят прогон
    scan_fail_severity: Optional[Severity] = None

    local_run_mode: Literal["process", "docker"] = "process"

    # Уведомления
    notify_webhook_url: Optional[str] = None
    notify_webhook_credentials: str = "teams-webhook"

    # Метаданные сборки для уведомления
    job_name: str = "aimlpipe"
    build_number: Optional[str] = None
    build_url: Optional[str] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Приоритет: аргументы конструктора, окружение, затем TOML."""
        return init_settings, env_settings, TomlConfigSettingsSource(settings_cls)

    def stage_timeout(self, stage_name: str) -> float:
        if stage_name in self.stage_timeouts:
            return self.stage_timeouts[stage_name]
        if stage_name == "quality-gate":
            # опрос SonarQube ограничен своим таймаутом, стадия должна жить дольше
            return self.quality_gate_timeout + QUALITY_GATE_TIMEOUT_MARGIN
        return self.stage_timeouts.get("default", DEFAULT_STAGE_TIMEOUTS["default"])

    def sonar_host_url(self, sonarqube_env: str) -> Optional[str]:
        return self.sonar_servers.get(sonarqube_env)


@lru_cache
def get_settings() -> Settings:
    """Закэшированный экземпляр настроек."""
    return Settings()

