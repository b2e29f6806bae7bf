"""
Client-side mirror of the server ability.

Rebuilds an Ability from the `/api/abilities` payload so a client can decide
what to render. The mirror is advisory: every request is still checked by
the server gate.
"""

import os
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv
from loguru import logger

from security.policy.abac import Ability

load_dotenv()


class ClientAbility:
    """Ability rebuilt from serialized rules plus the role/user it belongs to."""

    def __init__(self, rules: Optional[List[Dict[str, Any]]] = None,
                 role: Optional[str] = None,
                 user: Optional[Dict[str, Any]] = None):
        self.rules = list(rules or [])
        self.role = role
        self.user = user
        self.ability = Ability(self.rules)

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "ClientAbility":
        if not payload:
            return cls.empty()
        return cls(payload.get("rules") or [], payload.get("role"), payload.get("user"))

    @classmethod
    def empty(cls) -> "ClientAbility":
        """Deny-all mirror used for anonymous clients."""
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def can(self, action: str, subject: Any, field: Optional[str] = None) -> bool:
        return self.ability.can(action, subject, field)

    def cannot(self, action: str, subject: Any, field: Optional[str] = None) -> bool:
        return self.ability.cannot(action, subject, field)


class AbilityClient:
    """Fetch the current actor's abilities from the API."""

    def __init__(self,
                 base_url: Optional[str] = None,
                 token: Optional[str] = None,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or os.getenv("ABILITY_API_URL", "http://localhost:8000")).rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch(self) -> ClientAbility:
        """
        Load the ability mirror.

        Returns an empty mirror when the API answers 401. Other HTTP and
        transport errors are raised.
        """
        url = f"{self.base_url}/api/abilities"
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"[ABILITY] Failed to reach {url}: {e}")
            raise

        if response.status_code == 401:
            self.logger.debug("[ABILITY] Not authenticated, using empty ability")
            return ClientAbility.empty()

        response.raise_for_status()
        return ClientAbility.from_payload(response.json())


__all__ = ["AbilityClient", "ClientAbility"]
