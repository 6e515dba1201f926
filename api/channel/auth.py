"""Caller authentication for the channel sync API.

Interactive callers send `Authorization: Bearer <api key>`; the key is hashed
and looked up in api_keys to get its roles. Scheduled triggers may instead send
`X-Automation-Secret`, which is only honoured on the recurring sync endpoints.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.channel.deps import get_api_key_repo, get_automation_secret
from services.channel.api_key_repo import AUTOMATION_ROLE, IApiKeyRepo, Principal, hash_api_key

bearer = HTTPBearer(auto_error=False)


def _automation_ok(supplied: Optional[str], expected: Optional[str]) -> bool:
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode(), expected.encode())


async def _from_api_key(
    credentials: Optional[HTTPAuthorizationCredentials],
    repo: IApiKeyRepo,
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Missing API key")
    principal = await repo.get_principal(hash_api_key(credentials.credentials))
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return principal


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    repo: IApiKeyRepo = Depends(get_api_key_repo),
) -> Principal:
    """Bootstrap and diagnostics: an API key carrying the admin role."""
    principal = await _from_api_key(credentials, repo)
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return principal


async def require_sync_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    x_automation_secret: Optional[str] = Header(None, alias="X-Automation-Secret"),
    repo: IApiKeyRepo = Depends(get_api_key_repo),
    expected_secret: Optional[str] = Depends(get_automation_secret),
) -> Principal:
    """Recurring sync: any valid API key, or the shared automation secret."""
    if x_automation_secret is not None:
        if _automation_ok(x_automation_secret, expected_secret):
            return Principal(subject="automation", roles=[AUTOMATION_ROLE], via="automation_secret")
        if credentials is None:
            raise HTTPException(status_code=401, detail="Invalid automation secret")
    return await _from_api_key(credentials, repo)
