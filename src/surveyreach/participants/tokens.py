"""
Signed, expiring survey link tokens.

A token identifies exactly one participant in one batch, so a submission can
be resolved without scanning other batches. The identity itself never
appears in the URL in clear beyond the opaque participant id.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

import jwt
from jwt.exceptions import InvalidTokenError as JWTInvalidTokenError

from surveyreach.shared.database import utcnow
from surveyreach.shared.exceptions import InvalidTokenError
from surveyreach.shared.logging import get_logger

logger = get_logger(__name__)

TOKEN_TYPE = "survey_link"
ALGORITHM = "HS256"


@dataclass(frozen=True)
class LinkClaims:
    """Decoded contents of a survey link token."""

    participant_id: str
    batch_id: str
    survey_id: str


class SurveyLinkTokens:
    """Issue and verify personalized survey link tokens."""

    def __init__(
        self,
        secret: str,
        ttl: timedelta,
        base_url: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not secret:
            raise ValueError("link token secret must not be empty")
        self._secret = secret
        self._ttl = ttl
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    def issue(self, participant_id: str, batch_id: str, survey_id: str) -> str:
        """Create a token for one participant."""
        now = self._clock()
        payload = {
            "sub": participant_id,
            "bid": batch_id,
            "sid": survey_id,
            "type": TOKEN_TYPE,
            "iat": now,
            "exp": now + self._ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str) -> LinkClaims:
        """Verify a token and return its claims.

        Raises:
            InvalidTokenError: If the token is malformed, forged or expired.
        """
        if not token:
            raise InvalidTokenError("Missing survey token")
        try:
            # exp is checked against the injected clock below.
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={
                    "require": ["sub", "exp"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except JWTInvalidTokenError as e:
            logger.warning("Rejected survey token", extra={"reason": str(e)})
            raise InvalidTokenError() from e

        try:
            expires_at = float(payload["exp"])
        except (TypeError, ValueError) as e:
            raise InvalidTokenError() from e
        if expires_at <= self._clock().timestamp():
            raise InvalidTokenError("Survey token has expired")

        if payload.get("type") != TOKEN_TYPE:
            raise InvalidTokenError("Not a survey link token")
        if not payload.get("bid") or not payload.get("sid"):
            raise InvalidTokenError("Survey token is missing batch information")

        return LinkClaims(
            participant_id=str(payload["sub"]),
            batch_id=str(payload["bid"]),
            survey_id=str(payload["sid"]),
        )

    def survey_link(self, survey_id: str, participant_id: str, token: str) -> str:
        """Build the personalized survey URL."""
        query = urlencode({"t": token, "participantId": participant_id})
        return f"{self._base_url}/survey/{survey_id}?{query}"
