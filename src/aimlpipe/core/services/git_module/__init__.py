from .core import GitCheckout, read_commit

from .exceptions import (
    GitExceptions,
    SourceFetchError,
)
from .models import LocalRepo

__all__ = [
    "GitCheckout",
    "LocalRepo",
    "read_commit",
    "GitExceptions",
    "SourceFetchError",
]
