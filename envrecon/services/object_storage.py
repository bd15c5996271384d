from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import lru_cache
import logging
from pathlib import Path
import time
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from envrecon.core.config import get_settings
from envrecon.core.errors import ConfigurationError, ExternalDependencyError
from envrecon.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

STATE_FILE_NAME = "terraform.tfstate"


@dataclass(frozen=True)
class StoredObject:
    key: str
    body: bytes

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class ObjectStore(Protocol):
    async def get_object(self, bucket: str, key: str) -> StoredObject | None:
        ...

    async def get_objects(self, bucket: str, prefix: str) -> list[StoredObject]:
        ...


class LocalObjectStore:
    # Buckets map to directories under the root; keys are relative paths.
    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _path(self, bucket: str, key: str) -> Path:
        bucket_root = (self._root / bucket).resolve()
        path = (bucket_root / key).resolve()
        if bucket_root not in path.parents and path != bucket_root:
            raise ExternalDependencyError("object key escapes its bucket")
        return path

    async def get_object(self, bucket: str, key: str) -> StoredObject | None:
        path = self._path(bucket, key)
        if not path.is_file():
            return None
        body = await asyncio.to_thread(path.read_bytes)
        return StoredObject(key=key, body=body)

    async def get_objects(self, bucket: str, prefix: str) -> list[StoredObject]:
        directory = self._path(bucket, prefix)
        if not directory.is_dir():
            return []
        bucket_root = (self._root / bucket).resolve()
        objects: list[StoredObject] = []
        for path in sorted(directory.rglob("*")):
            if not path.is_file():
                continue
            body = await asyncio.to_thread(path.read_bytes)
            objects.append(StoredObject(key=path.relative_to(bucket_root).as_posix(), body=body))
        return objects


class S3ObjectStore:
    def __init__(self, region: str | None = None, client: Any | None = None) -> None:
        self._region = region
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._region)
        return self._client

    async def _call(self, operation: str, **request: Any) -> dict[str, Any]:
        client = self._get_client()
        start = time.monotonic()
        try:
            response = await asyncio.to_thread(getattr(client, operation), **request)
        except (BotoCoreError, ClientError):
            record_external_call(
                integration="object_store.s3",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise
        record_external_call(
            integration="object_store.s3",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        return response

    async def _read(self, bucket: str, key: str) -> StoredObject:
        response = await self._call("get_object", Bucket=bucket, Key=key)
        body = await asyncio.to_thread(response["Body"].read)
        return StoredObject(key=key, body=body)

    async def get_object(self, bucket: str, key: str) -> StoredObject | None:
        try:
            return await self._read(bucket, key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in {"NoSuchKey", "404"}:
                return None
            raise ExternalDependencyError("object storage read failed") from exc
        except BotoCoreError as exc:
            raise ExternalDependencyError("object storage read failed") from exc

    async def get_objects(self, bucket: str, prefix: str) -> list[StoredObject]:
        keys: list[str] = []
        token: str | None = None
        try:
            while True:
                request: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
                if token:
                    request["ContinuationToken"] = token
                response = await self._call("list_objects_v2", **request)
                keys.extend(item["Key"] for item in response.get("Contents", []))
                if not response.get("IsTruncated"):
                    break
                token = response.get("NextContinuationToken")
            return [await self._read(bucket, key) for key in keys]
        except (BotoCoreError, ClientError) as exc:
            raise ExternalDependencyError("object storage listing failed") from exc


@lru_cache
def get_object_store() -> ObjectStore:
    settings = get_settings()
    provider = settings.object_store_provider.lower()
    if provider == "local":
        return LocalObjectStore(settings.object_store_local_dir)
    if provider == "s3":
        return S3ObjectStore(region=settings.object_store_region)
    raise ConfigurationError(f"unknown object store provider: {settings.object_store_provider}")


def _bucket(kind: str, organization_name: str) -> str:
    settings = get_settings()
    return f"{settings.object_store_bucket_prefix}-{settings.deploy_environment}-{kind}-{organization_name}"


def plan_bucket(organization_name: str) -> str:
    return _bucket("tfplan", organization_name)


def state_bucket(organization_name: str) -> str:
    return _bucket("tfstate", organization_name)


async def get_component_logs(
    store: ObjectStore,
    *,
    organization_name: str,
    team_name: str,
    environment_name: str,
    component_name: str,
    reconcile_id: int,
) -> list[dict[str, str]]:
    bucket = plan_bucket(organization_name)
    prefix = f"{team_name}/{environment_name}/{component_name}/{reconcile_id}/"
    try:
        objects = await store.get_objects(bucket, prefix)
    except ExternalDependencyError:
        logger.exception("component_logs_read_failed bucket=%s prefix=%s", bucket, prefix)
        raise
    return [{"key": item.key, "body": item.text()} for item in objects]


async def get_state_file(
    store: ObjectStore,
    *,
    organization_name: str,
    team_name: str,
    environment_name: str,
    component_name: str,
) -> dict[str, str]:
    bucket = state_bucket(organization_name)
    key = f"{team_name}/{environment_name}/{component_name}/{STATE_FILE_NAME}"
    try:
        item = await store.get_object(bucket, key)
    except ExternalDependencyError:
        logger.exception("state_file_read_failed bucket=%s key=%s", bucket, key)
        raise
    # A component that never applied has no state yet.
    return {"key": key, "data": item.text() if item is not None else ""}
