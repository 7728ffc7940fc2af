"""CI/CD пайплайн для AIML-микросервисов."""

from .core.models import RunConfig, RunReport, ServiceProfile, StageResult
from .core.resolver import resolve
from .core.version import read_version

__all__ = ["RunConfig", "RunReport", "ServiceProfile", "StageResult", "resolve", "read_version"]
