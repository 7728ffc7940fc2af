import os
import stat
from pathlib import Path
from typing import Union
from urllib.parse import quote, urlsplit, urlunsplit

PathLike = Union[str, Path]


def on_rm_error(func, path, exc_info):
    """
    Обработчик ошибок для shutil.rmtree:
    - снимает флаг read-only (частый кейс для .git/objects/pack),
    - повторно вызывает функцию удаления.
    Если и повторно не вышло, ошибка уходит наверх.
    """
    os.chmod(path, stat.S_IWRITE)
    func(path)


def ensure_dir(path: PathLike) -> Path:
    """
    Гарантирует, что директория существует, и возвращает её как Path.
    """
    base = Path(path)
    base.mkdir(parents=True, exist_ok=True)
    return base


def with_credentials(url: str, username: str, password: str) -> str:
    """
    Встраивает логин/токен в https-URL. ssh и локальные пути не трогаем.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def mask_credentials(url: str) -> str:
    """
    URL для логов: пароль заменяется на ***.
    """
    parts = urlsplit(url)
    if not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{parts.username}:***@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
