"""
S3-based delta log using one-object-per-delta pattern.

Each delta is stored as a separate S3 object with key:
    {prefix}/deltas/{quoted user_id}/{created_at_us:017d}-{delta_id}.json

Zero-padded microsecond timestamps make lexicographic key order equal to
replay order (created_at, id), so range reads are listing scans.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..core.canonical import canonical_json_str
from ..core.deltas import StateDelta, collapse_redeliveries
from ..core.errors import StoreError
from .store import AppendResult, DeltaLog

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MICROSECOND = timedelta(microseconds=1)


def _micros(value: datetime) -> int:
    us = (value - EPOCH) // ONE_MICROSECOND
    if us < 0:
        raise StoreError(f"timestamp before epoch not supported: {value.isoformat()}")
    return us


class S3DeltaLog(DeltaLog):
    """
    S3-based append-only delta log.

    Guarantees:
    - Append-only (IfNoneMatch="*" refuses to overwrite an existing key)
    - Deterministic ordering (lexicographic key order = replay order)
    - Strong read-after-write consistency (AWS S3 as of Dec 2020)
    - Redeliveries: appends check the idempotency key among objects at the
      same microsecond; reads also collapse any that raced past the check

    Paginator: list_objects_v2 returns max 1000 keys per call.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "finreplay",
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
        client=None,
    ) -> None:
        """
        Initialize S3 delta log.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix (default: "finreplay")
            endpoint_url: S3 endpoint URL (for MinIO, localstack, etc.)
            region: AWS region (default: us-east-1)
            client: Preconfigured boto3 S3 client (optional)

        Raises:
            StoreError: If the S3 client cannot be created
        """
        self.bucket = bucket
        self.prefix = prefix.rstrip("/")
        try:
            self.s3_client = client or boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                region_name=region,
            )
        except (BotoCoreError, ClientError, ValueError) as e:
            raise StoreError(f"Failed to create S3 client: {e}") from e

    def _user_prefix(self, user_id: str) -> str:
        return f"{self.prefix}/deltas/{quote(user_id, safe='')}/"

    def key_for(self, delta: StateDelta) -> str:
        return f"{self._user_prefix(delta.user_id)}{_micros(delta.created_at):017d}-{quote(delta.id, safe='')}.json"

    def _micros_from_key(self, key: str) -> int:
        base = key.rsplit("/", 1)[-1]
        return int(base.split("-", 1)[0])

    def _redelivered(self, delta: StateDelta) -> bool:
        """True if an object at the same microsecond has delta's idempotency key."""
        prefix = f"{self._user_prefix(delta.user_id)}{_micros(delta.created_at):017d}-"
        response = self.s3_client.list_objects_v2(Bucket=self.bucket, Prefix=prefix)
        return any(
            self._get(obj["Key"]).idempotency_key() == delta.idempotency_key()
            for obj in response.get("Contents", [])
        )

    def _append_sync(self, delta: StateDelta) -> AppendResult:
        key = self.key_for(delta)
        try:
            if self._redelivered(delta):
                return AppendResult(delta=delta, committed=False, duplicate=True)
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"Failed to check {key}: {e}") from e
        body = canonical_json_str(delta.to_dict())
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
                IfNoneMatch="*",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("PreconditionFailed", "412"):
                return AppendResult(delta=delta, committed=False, duplicate=True)
            raise StoreError(f"Failed to put {key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to put {key}: {e}") from e
        return AppendResult(delta=delta, committed=True)

    def _get(self, key: str) -> StateDelta:
        response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
        body = response["Body"].read().decode("utf-8")
        return StateDelta.from_dict(json.loads(body))

    def _scan_sync(
        self,
        user_id: str,
        after: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[StateDelta]:
        prefix = self._user_prefix(user_id)
        kwargs = {"Bucket": self.bucket, "Prefix": prefix}
        if after is not None:
            # "." sorts after "-": skips every key stamped exactly at `after`
            kwargs["StartAfter"] = f"{prefix}{_micros(after):017d}."
        until_us = _micros(until) if until is not None else None

        out: List[StateDelta] = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(**kwargs):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if not key.endswith(".json"):
                        continue
                    if until_us is not None and self._micros_from_key(key) > until_us:
                        return collapse_redeliveries(out)
                    out.append(self._get(key))
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"Failed to read deltas for {user_id}: {e}") from e
        return collapse_redeliveries(out)

    def _user_ids_sync(self) -> List[str]:
        root = f"{self.prefix}/deltas/"
        users = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=root, Delimiter="/"):
                for cp in page.get("CommonPrefixes", []):
                    users.append(unquote(cp["Prefix"][len(root):].rstrip("/")))
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"Failed to list users: {e}") from e
        return sorted(users)

    async def append(self, delta: StateDelta) -> AppendResult:
        return await asyncio.to_thread(self._append_sync, delta)

    async def read_user(self, user_id: str) -> List[StateDelta]:
        return await asyncio.to_thread(self._scan_sync, user_id)

    async def read_range(
        self,
        user_id: str,
        until: datetime,
        after: Optional[datetime] = None,
    ) -> List[StateDelta]:
        return await asyncio.to_thread(self._scan_sync, user_id, after, until)

    async def user_ids(self) -> List[str]:
        return await asyncio.to_thread(self._user_ids_sync)
