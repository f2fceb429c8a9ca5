from typing import Any, Dict, Optional

import jwt
from pydantic import BaseModel

from . import log

logger = log.get_logger(__name__)


class AuthClientConfig(BaseModel):
    jwk_url: Optional[str] = None
    audience: Optional[str] = None
    issuer: Optional[str] = None
    # Shared-secret HS256 tokens, as minted by the campus login service
    secret: Optional[str] = None


class AuthClient:
    """
    Verifies bearer tokens issued by the identity provider.

    Token issuance is not our concern; we only check signatures and standard
    claims and hand the payload to the routes.
    """

    def __init__(self, config: AuthClientConfig):
        if not config.jwk_url and not config.secret:
            raise ValueError("AuthClient needs either a JWK URL or a shared secret")
        self.config = config
        self._jwk_client = jwt.PyJWKClient(config.jwk_url) if config.jwk_url else None

    def decode_jwt(self, token: str) -> Optional[Dict[str, Any]]:
        options = {"verify_aud": self.config.audience is not None}
        try:
            if self._jwk_client:
                signing_key = self._jwk_client.get_signing_key_from_jwt(token).key
                algorithms = ["RS256"]
            else:
                signing_key = self.config.secret
                algorithms = ["HS256"]
            return jwt.decode(
                token,
                signing_key,
                algorithms=algorithms,
                audience=self.config.audience,
                issuer=self.config.issuer,
                options=options,
            )
        except jwt.PyJWTError as e:
            logger.info(f"Rejected bearer token: {e}")
            return None
