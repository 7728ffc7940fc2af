from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Mapping, Union

DEFAULT_VERSION = "latest"

PathLike = Union[str, Path]


def _lookup(data: Mapping[str, Any], *keys: str) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def read_version(project_file: PathLike) -> str:
    """
    Достаём версию проекта из pyproject.toml (или любого TOML-манифеста).

    Порядок поиска:
      - version на верхнем уровне;
      - [project].version;
      - [tool.poetry].version.

    Нет файла, битый TOML, нет поля или это не строка — возвращаем "latest".
    Никогда не бросает исключений.
    """
    path = Path(project_file)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError):
        return DEFAULT_VERSION

    for keys in (("version",), ("project", "version"), ("tool", "poetry", "version")):
        value = _lookup(data, *keys)
        if isinstance(value, str) and value:
            return value

    return DEFAULT_VERSION
