"""Supabase client singleton and tenant lookup.

Provides a cached Supabase client using the service-role key so the
assistant can read and write the accounting tables on behalf of the
caller.  Tenant isolation is applied by ``gateway.DataGateway`` using the
tenant id resolved here through the ``get_user_tenant_id`` database
function.
"""

from __future__ import annotations

import logging
import uuid as _uuid
from typing import Any

from supabase import Client, create_client

from ishaar_assistant.config import SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────
# Singleton
# ─────────────────────────────────────────────

_client: Client | None = None


def get_supabase_client() -> Client | None:
    """Return a cached Supabase client (service-role).

    Returns ``None`` when the required env vars are missing so callers
    can degrade gracefully.
    """
    global _client
    if _client is not None:
        return _client

    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        logger.warning(
            "SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not set — "
            "Supabase client unavailable."
        )
        return None

    _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    logger.info("Supabase client initialised (%s)", SUPABASE_URL)
    return _client


# ─────────────────────────────────────────────
# Tenant lookup
# ─────────────────────────────────────────────


def resolve_tenant_id(client: Any, user_id: _uuid.UUID | str | None) -> str | None:
    """Look up the tenant a user belongs to.

    Returns ``None`` when no user id was supplied, the id is malformed or
    the lookup fails; the caller then runs unscoped with the service role.
    """
    if not user_id:
        return None

    try:
        uid = str(_uuid.UUID(str(user_id)))
    except ValueError:
        logger.warning("resolve_tenant_id: invalid user id %r", user_id)
        return None

    try:
        resp = client.rpc("get_user_tenant_id", {"_user_id": uid}).execute()
    except Exception:
        logger.exception("resolve_tenant_id failed uid=%s", uid)
        return None

    data = resp.data
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        data = data.get("get_user_tenant_id")
    return str(data) if data else None
