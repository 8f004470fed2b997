"""
Access verification and role gates.

Bearer tokens are Firebase ID tokens: RS256 JWTs signed with one of
Google's rotating x509 certificates. ``IdentityVerifier`` checks the
signature, audience and issuer with python-jose and hands back the
verified email. The FastAPI dependencies below bind that email (the
principal) to the request and, for gated routes, re-read the caller's
role from the users collection on every request.
"""

import base64
import json
import logging
import re
import threading
import time
from typing import Callable, Dict, Optional

import requests
from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

import config
import database

logger = logging.getLogger(__name__)

GOOGLE_CERTS_URL = "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
UNAUTHORIZED = "Unauthorized Access!"
FORBIDDEN = "Forbidden Access!"


class IdentityVerifier:
    def __init__(self, project_id: str, certs_url: str = GOOGLE_CERTS_URL):
        self.project_id = project_id
        self.issuer = f"https://securetoken.google.com/{project_id}"
        self.certs_url = certs_url
        self._certs: Dict[str, str] = {}
        self._certs_expire_at = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_service_key(cls, encoded: str) -> "IdentityVerifier":
        """Build a verifier from the base64-encoded service account bundle."""
        if not encoded:
            raise RuntimeError("FB_SERVICE_KEY is not configured")
        account = json.loads(base64.b64decode(encoded).decode("utf-8"))
        return cls(account["project_id"])

    def _certificates(self) -> Dict[str, str]:
        with self._lock:
            if self._certs and time.time() < self._certs_expire_at:
                return self._certs
            response = requests.get(self.certs_url, timeout=10)
            response.raise_for_status()
            self._certs = response.json()
            match = re.search(r"max-age=(\d+)", response.headers.get("Cache-Control", ""))
            self._certs_expire_at = time.time() + (int(match.group(1)) if match else 3600)
            return self._certs

    def verify(self, token: str) -> str:
        """Return the verified email for ``token`` or raise JWTError."""
        header = jwt.get_unverified_header(token)
        cert = self._certificates().get(header.get("kid", ""))
        if cert is None:
            raise JWTError("Token signed with an unknown key")
        claims = jwt.decode(
            token,
            cert,
            algorithms=["RS256"],
            audience=self.project_id,
            issuer=self.issuer,
        )
        email = claims.get("email")
        if not email:
            raise JWTError("Token carries no email claim")
        return email.lower()


_verifier: Optional[IdentityVerifier] = None


def load_verifier() -> IdentityVerifier:
    global _verifier
    if _verifier is None:
        _verifier = IdentityVerifier.from_service_key(config.FB_SERVICE_KEY)
    return _verifier


def get_verifier() -> Callable[[], IdentityVerifier]:
    """Hand out the loader so the verifier is only built once a token is present."""
    return load_verifier


def verify_token(
    authorization: Optional[str] = Header(None),
    load: Callable[[], IdentityVerifier] = Depends(get_verifier),
) -> str:
    parts = (authorization or "").split(" ")
    token = parts[1] if len(parts) > 1 else None
    if not token:
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)
    verifier = load()
    try:
        return verifier.verify(token)
    except (JWTError, requests.RequestException) as exc:
        logger.warning("Token verification failed: %s", exc)
        raise HTTPException(status_code=401, detail={"message": UNAUTHORIZED, "err": str(exc)})


def require_role(role: str) -> Callable[..., str]:
    def dependency(email: str = Depends(verify_token)) -> str:
        if not email:
            raise HTTPException(status_code=401, detail=UNAUTHORIZED)
        user = database.find_document("users", {"email": email})
        if not user or user.get("role") != role:
            logger.info("Denied %s access to %s", role, email)
            raise HTTPException(status_code=403, detail=FORBIDDEN)
        return email

    return dependency


require_admin = require_role("admin")
require_librarian = require_role("librarian")


def ensure_owner(principal: str, owner: Optional[str]):
    """Reject requests that act on another user's records."""
    if not owner or owner.lower() != principal.lower():
        raise HTTPException(status_code=403, detail=FORBIDDEN)
