"""Google sign-in: verify an ID token with Google's tokeninfo endpoint."""
import logging
import os
from typing import Dict

import requests

from errors import UpstreamFailure

logger = logging.getLogger(__name__)

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
TRUSTED_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


def verify_google_token(credential: str) -> Dict[str, str]:
    """Return {"subject_id", "email", "name"} for a valid Google ID token."""
    try:
        resp = requests.get(TOKENINFO_URL, params={"id_token": credential}, timeout=10)
    except requests.RequestException as e:
        logger.warning("Google token verification request failed: %s", e)
        raise UpstreamFailure("Google authentication failed", status_code=401)
    if resp.status_code != 200:
        logger.info("Google rejected an ID token (HTTP %s)", resp.status_code)
        raise UpstreamFailure("Google authentication failed", status_code=401)

    claims = resp.json()
    if GOOGLE_CLIENT_ID and claims.get("aud") != GOOGLE_CLIENT_ID:
        raise UpstreamFailure("Google authentication failed", status_code=401)
    if claims.get("iss") not in TRUSTED_ISSUERS or not claims.get("sub") or not claims.get("email"):
        raise UpstreamFailure("Google authentication failed", status_code=401)

    email = claims["email"]
    return {
        "subject_id": claims["sub"],
        "email": email,
        "name": claims.get("name") or email.split("@")[0],
    }
