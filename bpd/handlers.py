"""
bpd.handlers — One pipeline per endpoint.

Each pipeline is linear and short-circuits on the first failure:

    parse x-citizen-id → resolve → (audit) → query → project → Outcome

Pipelines never raise. Every failure is classified into an Outcome, and
internal failures are logged exactly once here, with the request id,
before the redacted Outcome is returned.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from bpd.audit import AuditEntry
from bpd.auth import AuthenticatedActor
from bpd.citizen_id import SupportToken, parse_citizen_id, resolve_citizen_id
from bpd.constants import (
    AUTH_LEVEL_ADMIN,
    CITIZEN_ID_HEADER,
    OPERATION_BLACKLIST_SUPPORT_TOKEN,
    OPERATION_GET_AWARDS,
    OPERATION_GET_CITIZEN,
    OPERATION_GET_TRANSACTIONS,
    SUPPORT_TOKEN_FISCAL_CODE_CLAIM,
)
from bpd.dependencies import Dependencies
from bpd.errors import (
    AuditError,
    BPDError,
    ForbiddenError,
    InvalidCitizenIdError,
    ProjectionError,
    QueryError,
)
from bpd.outcomes import InternalFailed, Outcome, Success, classify
from bpd.projection import to_api_awards, to_api_citizen, to_api_transactions
from bpd.repository import execute_query

logger = logging.getLogger("bpd.handlers")


async def _run(
    operation: str,
    request_id: str,
    steps: Callable[[], Awaitable[dict[str, Any]]],
) -> Outcome:
    try:
        payload = await steps()
    except BPDError as exc:
        if isinstance(exc, (QueryError, AuditError)):
            cause = exc.__cause__
            logger.error(json.dumps({
                "event": "pipeline_internal_error",
                "operation": operation,
                "request_id": request_id,
                "error": str(exc),
                "cause_type": type(cause).__name__ if cause is not None else None,
                "cause": str(cause) if cause is not None else None,
            }))
        elif isinstance(exc, ProjectionError):
            logger.warning(json.dumps({
                "event": "projection_failed",
                "operation": operation,
                "request_id": request_id,
                "report": exc.report,
            }))
        return classify(exc)
    except Exception as exc:
        logger.error(json.dumps({
            "event": "pipeline_unexpected_error",
            "operation": operation,
            "request_id": request_id,
            "error_type": type(exc).__name__,
            "error": str(exc),
        }))
        return InternalFailed()
    return Success(payload)


async def get_citizen(deps: Dependencies, raw_citizen_id: str | None, *, request_id: str) -> Outcome:
    """Citizen profile with enrolled payment methods."""

    async def steps() -> dict[str, Any]:
        citizen_id = parse_citizen_id(raw_citizen_id)
        fiscal_code = await resolve_citizen_id(citizen_id, deps.token_verifier, deps.blacklist)
        rows = await execute_query(deps.citizens, fiscal_code, "Citizen find query error")
        return to_api_citizen(rows).model_dump(mode="json", exclude_none=True)

    return await _run(OPERATION_GET_CITIZEN, request_id, steps)


async def get_awards(deps: Dependencies, raw_citizen_id: str | None, *, request_id: str) -> Outcome:
    """Award history. No rows is an empty list, not NotFound."""

    async def steps() -> dict[str, Any]:
        citizen_id = parse_citizen_id(raw_citizen_id)
        fiscal_code = await resolve_citizen_id(citizen_id, deps.token_verifier, deps.blacklist)
        rows = await execute_query(deps.awards, fiscal_code, "Awards find query error")
        return to_api_awards(fiscal_code, rows).model_dump(mode="json", exclude_none=True)

    return await _run(OPERATION_GET_AWARDS, request_id, steps)


async def get_transactions(
    deps: Dependencies,
    actor: AuthenticatedActor,
    raw_citizen_id: str | None,
    *,
    request_id: str,
) -> Outcome:
    """Transaction history. Audited before the query runs."""

    async def steps() -> dict[str, Any]:
        citizen_id = parse_citizen_id(raw_citizen_id)
        fiscal_code = await resolve_citizen_id(citizen_id, deps.token_verifier, deps.blacklist)
        await deps.audit.record(AuditEntry(
            AuthLevel=AUTH_LEVEL_ADMIN,
            Citizen=fiscal_code,
            OperationName=OPERATION_GET_TRANSACTIONS,
            PartitionKey=actor.oid,
            RowKey=request_id,
        ))
        rows = await execute_query(deps.transactions, fiscal_code, "Transactions find query error")
        return to_api_transactions(rows).model_dump(mode="json", exclude_none=True)

    return await _run(OPERATION_GET_TRANSACTIONS, request_id, steps)


async def blacklist_support_token(
    deps: Dependencies,
    actor: AuthenticatedActor,
    raw_citizen_id: str | None,
    *,
    request_id: str,
) -> Outcome:
    """Revoke a support token. Admin group only."""

    async def steps() -> dict[str, Any]:
        citizen_id = parse_citizen_id(raw_citizen_id)
        if not isinstance(citizen_id, SupportToken):
            raise InvalidCitizenIdError(f"{CITIZEN_ID_HEADER}: expected a support token")
        if not actor.is_member_of(deps.admin_group_name):
            raise ForbiddenError()

        claims = deps.token_verifier.verify(citizen_id.value)
        await deps.audit.record(AuditEntry(
            AuthLevel=AUTH_LEVEL_ADMIN,
            Citizen=claims[SUPPORT_TOKEN_FISCAL_CODE_CLAIM],
            OperationName=OPERATION_BLACKLIST_SUPPORT_TOKEN,
            PartitionKey=actor.oid,
            RowKey=request_id,
        ))
        ttl = await deps.blacklist.revoke(citizen_id.value, claims)
        logger.info(json.dumps({
            "event": "support_token_revoked",
            "request_id": request_id,
            "ttl_seconds": ttl,
        }))
        return {"message": "Support token revoked"}

    return await _run(OPERATION_BLACKLIST_SUPPORT_TOKEN, request_id, steps)
