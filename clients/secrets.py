"""
Secret providers.
"""
from typing import Dict, Optional

from crawler.interfaces import ISecretProvider


class StaticSecretProvider(ISecretProvider):
    """Fixed secrets, mostly for tests and settings-driven wiring."""

    def __init__(self, secrets: Dict[str, Optional[str]]):
        self._secrets = dict(secrets)

    def get_secret(self, name: str) -> Optional[str]:
        return self._secrets.get(name) or None
