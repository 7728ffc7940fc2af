from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from aimlpipe.core.models import CommitInfo


@dataclass
class LocalRepo:
    """
    Результат клонирования.

    repo_path — рабочее дерево сервиса;
    commit    — HEAD после checkout (для уведомления);
    logs      — текстовые логи шагов.
    """

    repo_path: Path
    branch: str
    commit: Optional[CommitInfo]
    logs: List[str]
