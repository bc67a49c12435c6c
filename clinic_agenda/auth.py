import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

security = HTTPBearer()


class ApiCredentials(BaseModel):
    """
    Credentials forwarded to the clinic backend.

    Passed explicitly into every repository call; nothing in the scheduling
    core reads a token from ambient state.
    """

    model_config = ConfigDict(frozen=True)

    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


async def get_api_credentials(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> ApiCredentials:
    """Extract the backend token from the Authorization header"""
    token = (credentials.credentials or "").strip()
    if not token:
        logger.warning("⚠️ Empty bearer token rejected")
        raise HTTPException(status_code=401, detail="Authentication error.")
    return ApiCredentials(token=token)
