from typing import Dict, Iterable, Mapping

from aimlpipe.core.models import ServiceProfile
from aimlpipe.exception import ConfigurationError

GITHUB_ORG = "https://github.com/SurnoiTechnology"


def _table(profiles: Iterable[ServiceProfile]) -> Dict[str, ServiceProfile]:
    return {p.name: p for p in profiles}


# Стандартная раскладка портов: по сотне на сервис
STANDARD_PROFILES: Mapping[str, ServiceProfile] = _table([
    ServiceProfile(
        name="api-gateway",
        repo=f"{GITHUB_ORG}/API-Gateway-AIML-Microservice.git",
        entrypoint="gateway.py",
        image_name="api-gateway",
        port=8000,
    ),
    ServiceProfile(
        name="aiml-testcase",
        repo=f"{GITHUB_ORG}/AIML-Testcase-Microservice.git",
        entrypoint="Integration.py",
        image_name="aiml-testcase",
        port=8100,
    ),
    ServiceProfile(
        name="jobtestcase",
        repo=f"{GITHUB_ORG}/JobTestcase-Microservice.git",
        entrypoint="integration.py",
        image_name="jobtestcase",
        port=8200,
    ),
    ServiceProfile(
        name="feed-aiml",
        repo=f"{GITHUB_ORG}/Feed-AIML-Microservice.git",
        entrypoint="app_main.py",
        image_name="feed-aiml",
        port=8300,
    ),
])

# Вариант aimlPipeline: порты подряд + общая библиотека без entrypoint/порта
AIML_PROFILES: Mapping[str, ServiceProfile] = _table([
    STANDARD_PROFILES["api-gateway"],
    STANDARD_PROFILES["aiml-testcase"].model_copy(update={"port": 8001}),
    STANDARD_PROFILES["jobtestcase"].model_copy(update={"port": 8002}),
    STANDARD_PROFILES["feed-aiml"].model_copy(update={"port": 8003}),
    ServiceProfile(
        name="aiml-shared-library",
        repo=f"{GITHUB_ORG}/AIML-Shared-Library.git",
        image_name="aiml-shared-library",
    ),
])

PROFILE_SETS: Mapping[str, Mapping[str, ServiceProfile]] = {
    "standard": STANDARD_PROFILES,
    "aiml": AIML_PROFILES,
}


def get_profiles(profile_set: str = "standard") -> Mapping[str, ServiceProfile]:
    try:
        return PROFILE_SETS[profile_set]
    except KeyError:
        raise ConfigurationError(
            f"Unknown profile set {profile_set!r}; available: {sorted(PROFILE_SETS)}"
        )
