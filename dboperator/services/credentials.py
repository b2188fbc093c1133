"""
Credential slots.

A Database has exactly one `current` credential secret. During a rotation
two transient slots exist next to it: `new` holds the credential being
introduced and `old` holds a backup of the credential being retired.
Each slot is a single, deterministically named secret.
"""
from enum import Enum
from typing import Any, Dict, Optional

from dboperator.models.database import Database
from dboperator.platform.base import Kind, PlatformClient
from dboperator.platform.objects import object_meta, secret_data

SLOT_LABEL = "dboperator.io/credential-slot"


class CredentialSlot(str, Enum):
    CURRENT = "current"
    NEW = "new"
    OLD = "old"


class CredentialSlots:
    """Names and bodies of the credential secrets of one Database."""

    def __init__(self, database: Database):
        self.database = database

    @property
    def base_name(self) -> str:
        return self.database.spec.auth.secret_name or f"{self.database.name}-credentials"

    def name_for(self, slot: CredentialSlot) -> str:
        if slot is CredentialSlot.CURRENT:
            return self.base_name
        return f"{self.base_name}-{slot.value}"

    def secret_body(self, slot: CredentialSlot, data: Dict[str, str]) -> Dict[str, Any]:
        """Secret body for a slot; ``data`` is already base64 encoded."""
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": object_meta(self.database, self.name_for(slot), {SLOT_LABEL: slot.value}),
            "data": dict(data),
        }

    async def read(self, platform: PlatformClient, slot: CredentialSlot) -> Optional[Dict[str, Any]]:
        return await platform.get(Kind.SECRET, self.database.namespace, self.name_for(slot))

    async def read_data(self, platform: PlatformClient, slot: CredentialSlot) -> Optional[Dict[str, str]]:
        """Raw data of a slot, or None when the slot is empty."""
        secret = await self.read(platform, slot)
        if secret is None:
            return None
        return secret_data(secret)
