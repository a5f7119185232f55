"""
API key management for the admin API.
"""

from typing import List, Optional

from shared.errors import NotFoundError, ValidationError
from shared.keystore import API_KEY, CLIENT, CLIENT_KEYS, KeyValueStore
from shared.logging import get_logger, mask_key

from ..auth import ApiKeyValidator
from ..models import ApiKeyCreate, ApiKeyRecord, ApiKeyUpdate
from ..routing import TargetRegistry
from .auth import generate_api_key


class ApiKeyService:
    """Issues, updates and revokes API keys."""

    def __init__(
        self,
        store: KeyValueStore,
        targets: TargetRegistry,
        validator: Optional[ApiKeyValidator] = None,
    ):
        self.store = store
        self.targets = targets
        self.validator = validator
        self.logger = get_logger("gateway.admin.api_keys")

    async def get_api_key(self, api_key: str) -> ApiKeyRecord:
        data = await self.store.get_json(API_KEY.key(api_key))
        if data is None:
            raise NotFoundError("API Key not found")
        data.setdefault("key", api_key)
        return ApiKeyRecord.model_validate(data)

    async def list_for_client(self, client_id: str) -> List[ApiKeyRecord]:
        if not await self.store.exists(CLIENT.key(client_id)):
            raise NotFoundError("Client not found", details={"client_id": client_id})

        records = []
        for api_key in await self.store.get_json(CLIENT_KEYS.key(client_id)) or []:
            data = await self.store.get_json(API_KEY.key(api_key))
            if data is not None:
                data.setdefault("key", api_key)
                records.append(ApiKeyRecord.model_validate(data))
        return records

    async def create_api_key(self, payload: ApiKeyCreate) -> ApiKeyRecord:
        if not payload.client_id:
            raise ValidationError("Client ID is required")

        if not await self.store.exists(CLIENT.key(payload.client_id)):
            raise NotFoundError("Client not found", details={"client_id": payload.client_id})

        if payload.target_id and payload.target_id not in self.targets:
            raise ValidationError("Unknown target", details={"target_id": payload.target_id})

        record = ApiKeyRecord(
            key=generate_api_key(),
            client_id=payload.client_id,
            target_id=payload.target_id,
            active=payload.active,
            expires_at=payload.expires_at,
        )
        await self.store.put_json(API_KEY.key(record.key), record.to_json_dict())

        index_key = CLIENT_KEYS.key(record.client_id)
        api_keys = await self.store.get_json(index_key) or []
        api_keys.append(record.key)
        await self.store.put_json(index_key, api_keys)

        self.logger.info(
            "API key created",
            api_key=mask_key(record.key),
            client_id=record.client_id,
            target_id=record.target_id,
        )
        return record

    async def update_api_key(self, api_key: str, payload: ApiKeyUpdate) -> ApiKeyRecord:
        current = await self.get_api_key(api_key)

        updates = {}
        if payload.active is not None:
            updates["active"] = payload.active
        if "expires_at" in payload.model_fields_set:
            updates["expires_at"] = payload.expires_at

        updated = current.model_copy(update=updates)
        await self.store.put_json(API_KEY.key(api_key), updated.to_json_dict())

        if self.validator:
            self.validator.invalidate(api_key)

        self.logger.info("API key updated", api_key=mask_key(api_key), fields=sorted(updates))
        return updated

    async def delete_api_key(self, api_key: str) -> None:
        record = await self.get_api_key(api_key)
        await self.store.delete(API_KEY.key(api_key))

        index_key = CLIENT_KEYS.key(record.client_id)
        api_keys = await self.store.get_json(index_key) or []
        if api_key in api_keys:
            remaining = [key for key in api_keys if key != api_key]
            if remaining:
                await self.store.put_json(index_key, remaining)
            else:
                await self.store.delete(index_key)

        if self.validator:
            self.validator.invalidate(api_key)

        self.logger.info("API key deleted", api_key=mask_key(api_key), client_id=record.client_id)
