from typing import List, Optional, Sequence


class PipelineException(Exception):
    """
    Базовое исключение пайплайна.

    description — человекочитаемое описание для CLI и уведомления;
    logs        — логи шагов, накопленные к моменту ошибки.
    """

    def __init__(
        self,
        *args,
        description: str = "Something happend in pipeline",
        logs: Optional[List[str]] = None,
    ):
        super().__init__(description, *args)
        self.description = description
        self.logs: List[str] = logs or []

    def __str__(self) -> str:
        return self.description


class ConfigurationError(PipelineException):
    """
    Неизвестный сервис, отсутствующее обязательное поле или некорректное значение.
    """

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(description=message, logs=logs)


class EnvironmentSetupError(PipelineException):
    """
    Ошибка setup_environment.sh. Обычно не фатальна.
    """

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(description=message, logs=logs)


class ToolInvocationError(PipelineException):
    """
    Внешний инструмент (сканер, pip, sonar-scanner...) завершился с ненулевым кодом.
    """

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int],
        stdout: str = "",
        stderr: str = "",
        logs: Optional[List[str]] = None,
    ) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        description = f"Command {' '.join(self.command)} failed with exit code {returncode}"
        if stderr.strip():
            description += f": {stderr.strip().splitlines()[-1]}"
        super().__init__(description=description, logs=logs)


class StageTimeoutError(ToolInvocationError):
    """
    Процесс не уложился в таймаут стадии и был убит.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout: float,
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(command, None, logs=logs)
        self.timeout = timeout
        self.description = f"{' '.join(self.command)} timed out after {timeout:g}s"


class QualityGateError(PipelineException):
    """
    Quality gate вернул статус, отличный от OK, или не ответил за отведённое время.
    """

    def __init__(
        self,
        status: str,
        message: Optional[str] = None,
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            description=message or f"SonarQube Quality Gate failed: {status}",
            logs=logs,
        )
        self.status = status


class RegistryError(PipelineException):
    """
    Ошибка логина или push в container registry.
    """

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(description=message, logs=logs)


class BuildError(PipelineException):
    """
    Docker-образ не собран, и всё, что зависит от образа, выполнять нельзя.
    """

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(description=message, logs=logs)
