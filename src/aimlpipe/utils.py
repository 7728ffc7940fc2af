import asyncio
import functools
from typing import Dict, Iterable

import click


def async_click(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


def parse_assignments(values: Iterable[str]) -> Dict[str, str]:
    """
    ("SERVICE_NAME=feed-aiml", "PORT=8300") -> {"SERVICE_NAME": "feed-aiml", "PORT": "8300"}
    """
    result: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--set")
        result[key.upper()] = value
    return result
