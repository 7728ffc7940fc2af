"""
Хранилище секретов по идентификаторам.

Идентификатор превращается в имя переменной окружения так же, как это делает
Jenkins при биндинге credentials(): "dockerhub-credentials" -> DOCKERHUB_CREDENTIALS.
Секретный текст лежит в <ID>, логин и пароль в <ID>_USR / <ID>_PSW.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from aimlpipe.exception import ConfigurationError


@dataclass(frozen=True)
class UsernamePassword:
    username: str
    password: str


def env_key(credentials_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", credentials_id).upper()


class CredentialStore:
    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self.environ = os.environ if environ is None else environ

    def find_secret(self, credentials_id: str) -> Optional[str]:
        return self.environ.get(env_key(credentials_id)) or None

    def find_user_pass(self, credentials_id: str) -> Optional[UsernamePassword]:
        key = env_key(credentials_id)
        username = self.environ.get(f"{key}_USR")
        password = self.environ.get(f"{key}_PSW")
        if not username or not password:
            return None
        return UsernamePassword(username=username, password=password)

    def secret(self, credentials_id: str) -> str:
        value = self.find_secret(credentials_id)
        if value is None:
            raise ConfigurationError(
                f"Credentials {credentials_id!r} not found: set {env_key(credentials_id)}"
            )
        return value

    def user_pass(self, credentials_id: str) -> UsernamePassword:
        value = self.find_user_pass(credentials_id)
        if value is None:
            key = env_key(credentials_id)
            raise ConfigurationError(
                f"Credentials {credentials_id!r} not found: set {key}_USR and {key}_PSW"
            )
        return value
