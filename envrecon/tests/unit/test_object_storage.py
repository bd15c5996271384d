from __future__ import annotations

import io

from botocore.exceptions import ClientError
import pytest

from envrecon.core.errors import ExternalDependencyError
from envrecon.services.object_storage import (
    LocalObjectStore,
    S3ObjectStore,
    get_component_logs,
    get_state_file,
    plan_bucket,
    state_bucket,
)


def test_bucket_names_follow_deployment_and_org() -> None:
    assert plan_bucket("acme") == "zlifecycle-dev-tfplan-acme"
    assert state_bucket("acme") == "zlifecycle-dev-tfstate-acme"


@pytest.mark.asyncio
async def test_local_store_reads_component_logs_by_run_prefix(tmp_path) -> None:
    run_dir = tmp_path / "zlifecycle-dev-tfplan-acme" / "platform" / "dev" / "network" / "42"
    run_dir.mkdir(parents=True)
    (run_dir / "plan_output").write_text("Plan: 1 to add")
    (run_dir / "apply_output").write_text("Apply complete")
    other = tmp_path / "zlifecycle-dev-tfplan-acme" / "platform" / "dev" / "network" / "41"
    other.mkdir(parents=True)
    (other / "plan_output").write_text("old")

    logs = await get_component_logs(
        LocalObjectStore(tmp_path),
        organization_name="acme",
        team_name="platform",
        environment_name="dev",
        component_name="network",
        reconcile_id=42,
    )

    assert logs == [
        {"key": "platform/dev/network/42/apply_output", "body": "Apply complete"},
        {"key": "platform/dev/network/42/plan_output", "body": "Plan: 1 to add"},
    ]


@pytest.mark.asyncio
async def test_missing_state_file_reads_as_empty(tmp_path) -> None:
    state = await get_state_file(
        LocalObjectStore(tmp_path),
        organization_name="acme",
        team_name="platform",
        environment_name="dev",
        component_name="network",
    )
    assert state == {"key": "platform/dev/network/terraform.tfstate", "data": ""}


@pytest.mark.asyncio
async def test_local_store_rejects_keys_outside_bucket(tmp_path) -> None:
    with pytest.raises(ExternalDependencyError):
        await LocalObjectStore(tmp_path).get_object("bucket", "../other/secret")


class _FakeS3:
    def __init__(self, objects: dict[str, bytes], *, fail_with: Exception | None = None) -> None:
        self.objects = objects
        self.fail_with = fail_with

    def get_object(self, Bucket: str, Key: str) -> dict:
        if self.fail_with is not None:
            raise self.fail_with
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def list_objects_v2(self, Bucket: str, Prefix: str, ContinuationToken: str | None = None) -> dict:
        keys = sorted(key for key in self.objects if key.startswith(Prefix))
        if ContinuationToken is None and len(keys) > 1:
            return {"Contents": [{"Key": keys[0]}], "IsTruncated": True, "NextContinuationToken": "page-2"}
        remaining = keys[1:] if ContinuationToken else keys
        return {"Contents": [{"Key": key} for key in remaining], "IsTruncated": False}


@pytest.mark.asyncio
async def test_s3_store_pages_through_listing() -> None:
    store = S3ObjectStore(
        client=_FakeS3({"t/e/c/1/a": b"first", "t/e/c/1/b": b"second", "t/e/c/2/a": b"other"})
    )
    objects = await store.get_objects("bucket", "t/e/c/1/")
    assert [(item.key, item.text()) for item in objects] == [("t/e/c/1/a", "first"), ("t/e/c/1/b", "second")]


@pytest.mark.asyncio
async def test_s3_store_maps_missing_key_to_none_and_failures_to_errors() -> None:
    assert await S3ObjectStore(client=_FakeS3({})).get_object("bucket", "missing") is None

    denied = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject")
    with pytest.raises(ExternalDependencyError):
        await S3ObjectStore(client=_FakeS3({"k": b"v"}, fail_with=denied)).get_object("bucket", "k")
