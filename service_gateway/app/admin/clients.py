"""
Client management for the admin API.
"""

from typing import Any, Dict, List, Optional

from shared.errors import ConflictError, NotFoundError, ValidationError
from shared.keystore import API_KEY, CLIENT, CLIENT_KEYS, CLIENT_LIST_KEY, EMAIL, KeyValueStore
from shared.logging import get_logger

from ..auth import ApiKeyValidator, ClientLookup
from ..credits import CreditLedger
from ..models import PLAN_CREDITS, ClientCreate, ClientRecord, ClientUpdate
from .auth import generate_client_id


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


class ClientService:
    """CRUD on client records and their indexes."""

    def __init__(
        self,
        store: KeyValueStore,
        ledger: CreditLedger,
        client_lookup: Optional[ClientLookup] = None,
        validator: Optional[ApiKeyValidator] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.client_lookup = client_lookup
        self.validator = validator
        self.logger = get_logger("gateway.admin.clients")

    async def _client_ids(self) -> List[str]:
        ids = await self.store.get_json(CLIENT_LIST_KEY)
        if ids:
            return list(ids)

        # Rebuild from a key scan when the list is missing
        keys = await self.store.list_keys(f"{CLIENT.prefix}:")
        return [
            CLIENT.strip(key)
            for key in keys
            if not key.startswith(f"{CLIENT_KEYS.prefix}:")
        ]

    async def list_clients(self) -> List[ClientRecord]:
        clients = []
        for client_id in await self._client_ids():
            data = await self.store.get_json(CLIENT.key(client_id))
            if data is not None:
                clients.append(ClientRecord.model_validate(data))
        return clients

    async def find_client(self, client_id: str) -> Optional[ClientRecord]:
        data = await self.store.get_json(CLIENT.key(client_id))
        if data is None:
            return None
        return ClientRecord.model_validate(data)

    async def get_client(self, client_id: str) -> ClientRecord:
        client = await self.find_client(client_id)
        if client is None:
            raise NotFoundError("Client not found", details={"client_id": client_id})
        return client

    async def _claim_email(self, email: str, client_id: str) -> None:
        if await self.store.put_if_absent(EMAIL.key(email), client_id):
            return
        if await self.store.get(EMAIL.key(email)) != client_id:
            raise ConflictError("Email already in use", details={"email": email})

    async def create_client(self, payload: ClientCreate) -> Dict[str, Any]:
        name = (payload.name or "").strip()
        if not name:
            raise ValidationError("Client name is required")

        email = normalize_email(payload.email)
        client_id = generate_client_id()
        if email:
            await self._claim_email(email, client_id)

        client = ClientRecord(
            id=client_id,
            name=name,
            email=email,
            plan=payload.plan,
            type=payload.type,
            metadata=payload.metadata,
        )

        await self.store.put_json(CLIENT.key(client.id), client.to_json_dict())

        ids = await self.store.get_json(CLIENT_LIST_KEY) or []
        if client.id not in ids:
            ids.append(client.id)
            await self.store.put_json(CLIENT_LIST_KEY, ids)

        credits = await self.ledger.set(client.id, PLAN_CREDITS[client.plan])

        self.logger.info("Client created", client_id=client.id, plan=client.plan, credits=credits)
        return {"id": client.id, "client": client.to_json_dict(), "credits": credits}

    async def update_client(self, client_id: str, payload: ClientUpdate) -> ClientRecord:
        current = await self.get_client(client_id)
        updates = payload.model_dump(exclude_unset=True, exclude_none=True)

        if "name" in updates:
            updates["name"] = updates["name"].strip()
            if not updates["name"]:
                raise ValidationError("Client name is required")

        if "email" in updates:
            new_email = normalize_email(updates["email"])
            updates["email"] = new_email
            if new_email != current.email:
                if new_email:
                    await self._claim_email(new_email, client_id)
                if current.email:
                    await self.store.delete(EMAIL.key(current.email))

        # id and createdAt are not part of ClientUpdate and cannot change
        updated = current.model_copy(update=updates)
        updated = ClientRecord.model_validate(updated.model_dump())
        await self.store.put_json(CLIENT.key(client_id), updated.to_json_dict())

        if self.client_lookup:
            self.client_lookup.invalidate(client_id)

        self.logger.info("Client updated", client_id=client_id, fields=sorted(updates))
        return updated

    async def delete_client(self, client_id: str) -> None:
        client = await self.get_client(client_id)

        api_keys = await self.store.get_json(CLIENT_KEYS.key(client_id)) or []
        for api_key in api_keys:
            await self.store.delete(API_KEY.key(api_key))
            if self.validator:
                self.validator.invalidate(api_key)
        await self.store.delete(CLIENT_KEYS.key(client_id))

        if client.email:
            await self.store.delete(EMAIL.key(client.email))

        await self.ledger.delete(client_id)
        await self.store.delete(CLIENT.key(client_id))

        ids = await self.store.get_json(CLIENT_LIST_KEY) or []
        if client_id in ids:
            await self.store.put_json(CLIENT_LIST_KEY, [i for i in ids if i != client_id])

        if self.client_lookup:
            self.client_lookup.invalidate(client_id)

        self.logger.info("Client deleted", client_id=client_id, api_keys=len(api_keys))
