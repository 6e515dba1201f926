"""FastAPI dependency providers. Tests replace these via app.dependency_overrides."""

from functools import lru_cache
from typing import Optional

from fastapi import Depends

from services.channel.api_key_repo import ApiKeyRepo, IApiKeyRepo
from services.channel.service import Service


@lru_cache(maxsize=1)
def get_service() -> Service:
    return Service()


def get_api_key_repo() -> IApiKeyRepo:
    return ApiKeyRepo()


def get_automation_secret(service: Service = Depends(get_service)) -> Optional[str]:
    return service.config.automation_secret
