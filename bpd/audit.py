"""
bpd.audit — Audit log of privileged reads and revocations.

One Azure Table Storage entity is written (insert-or-replace) per
privileged request, before the main query runs. The write is not
best-effort: an AuditError aborts the request.

Entity shape:
    PartitionKey  — actor oid
    RowKey        — request id (X-Request-ID)
    AuthLevel     — "Admin"
    Citizen       — fiscal code the operation targeted
    OperationName — e.g. "GetBPDTransactions"
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Protocol

from azure.core.exceptions import AzureError
from azure.data.tables import UpdateMode
from azure.data.tables.aio import TableClient

from bpd.errors import AuditError


@dataclass(frozen=True, slots=True)
class AuditEntry:
    AuthLevel: str
    Citizen: str
    OperationName: str
    PartitionKey: str
    RowKey: str


class AuditRecorder(Protocol):
    async def record(self, entry: AuditEntry) -> None: ...


class TableAuditRecorder:
    """AuditRecorder writing to an Azure Storage table."""

    def __init__(self, table_client: TableClient) -> None:
        self._table = table_client

    @classmethod
    def from_connection_string(cls, connection_string: str, table_name: str) -> TableAuditRecorder:
        return cls(TableClient.from_connection_string(connection_string, table_name=table_name))

    async def record(self, entry: AuditEntry) -> None:
        try:
            await self._table.upsert_entity(entity=asdict(entry), mode=UpdateMode.REPLACE)
        except AzureError as exc:
            raise AuditError() from exc

    async def close(self) -> None:
        await self._table.close()
