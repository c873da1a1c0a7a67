from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from .errors import ConnectError

# Client-level bulkWrite (single request spanning namespaces) arrived in MongoDB 8.0
ATOMIC_BULK_MIN_MAJOR = 8

_CREDENTIALS = re.compile(r"//[^@/]+@")


@dataclass(frozen=True)
class MongoEndpoint:
    uri: str
    database: str
    collection: str

    @property
    def namespace(self) -> str:
        return f"{self.database}.{self.collection}"

    def redacted(self) -> str:
        return f"{_CREDENTIALS.sub('//***@', self.uri)} {self.namespace}"


async def connect(endpoint: MongoEndpoint) -> Tuple[AsyncMongoClient, Any]:
    """Open a client for ``endpoint`` and verify it answers a ping."""
    log = logging.getLogger(__name__)
    try:
        client: AsyncMongoClient = AsyncMongoClient(endpoint.uri)
    except PyMongoError as e:
        raise ConnectError(f"Invalid MongoDB URI for {endpoint.namespace}: {e}") from e
    try:
        await client.admin.command("ping")
    except PyMongoError as e:
        await client.close()
        raise ConnectError(f"Cannot reach {endpoint.redacted()}: {e}") from e
    log.info("Connected to %s", endpoint.redacted())
    return client, client[endpoint.database][endpoint.collection]


def parse_major_version(version: str) -> Optional[int]:
    head = version.split(".", 1)[0].strip()
    try:
        return int(head)
    except ValueError:
        return None


def supports_atomic_bulk(version: str) -> bool:
    major = parse_major_version(version)
    return major is not None and major >= ATOMIC_BULK_MIN_MAJOR


async def server_version(client: Any) -> str:
    try:
        info = await client.admin.command("buildInfo")
    except PyMongoError as e:
        raise ConnectError(f"buildInfo failed: {e}") from e
    version = info.get("version")
    if not isinstance(version, str):
        raise ConnectError("Could not determine MongoDB version")
    return version
