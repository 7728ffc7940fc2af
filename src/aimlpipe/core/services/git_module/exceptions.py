from typing import List, Optional

from aimlpipe.exception import PipelineException


class GitExceptions(PipelineException):
    """
    Базовое исключение для работы с Git/репозиториями.

    Дополнительно хранит логи (steps), накопленные во время операции.
    """

    def __init__(
        self,
        *args,
        description: str = "Something happend when work with Git",
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(*args, description=description, logs=logs)


class SourceFetchError(GitExceptions):
    """
    Ошибка при клонировании удалённого репозитория.
    """

    def __init__(
        self,
        repository: str,
        branch: str,
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to clone repository {repository} in branch {branch}"
        super().__init__(*args, description=description, logs=logs)
        self.repository = repository
        self.branch = branch
