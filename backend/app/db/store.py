"""
Run persistence on top of Supabase.

The pipeline only needs a handful of row operations (load a run with its flow
and prompts, write prompt runs, update run status, record webhooks and media),
so they live here instead of being scattered across the services.
Uses the service role key: run state is written on behalf of every caller.
"""
from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)

UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

RUN_WITH_FLOW_SELECT = "*, flow:flows(id, name, slug, description, prompts(*))"
RUN_LIST_SELECT = (
    "*, prompt_runs(id, status, input_tokens, output_tokens, total_tokens, selected_provider, model)"
)

# Columns a run listing may be ordered by.
RUN_SORT_COLUMNS = ("created_at", "updated_at", "started_at", "completed_at", "status")


class PersistenceError(RuntimeError):
    """A write did not return the row it was supposed to create or update."""


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Create the process-wide Supabase client from the environment."""
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    if not supabase_url:
        raise ValueError("SUPABASE_URL environment variable is required")
    if not supabase_key:
        raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")

    try:
        return create_client(supabase_url, supabase_key)
    except Exception as e:
        raise ValueError(f"Failed to create Supabase client: {str(e)}")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_uuid(value: str) -> bool:
    return bool(UUID_REGEX.match(value))


class RunStore:
    """Row-level operations used by the run pipeline and the runs API."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def get_run_with_flow_and_prompts(self, run_id: str) -> dict[str, Any] | None:
        """Load a run with its flow and the flow's prompts in creation order."""
        result = (
            self.client.table("runs")
            .select(RUN_WITH_FLOW_SELECT)
            .eq("id", run_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None

        row = result.data[0]
        flow = row.get("flow")
        if flow and flow.get("prompts"):
            # Callers sort by position; a stable sort then keeps creation order for ties.
            flow["prompts"] = sorted(flow["prompts"], key=lambda p: p.get("created_at") or "")
        return row

    def get_run(self, run_id: str) -> dict[str, Any] | None:
        result = self.client.table("runs").select("*").eq("id", run_id).limit(1).execute()
        return result.data[0] if result.data else None

    def insert_run(self, fields: dict[str, Any]) -> dict[str, Any]:
        return self._insert("runs", fields)

    def update_run(self, run_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return self._update("runs", run_id, {**fields, "updated_at": utc_now_iso()})

    def list_runs(
        self,
        *,
        flow_id: str | None = None,
        status: str | None = None,
        cursor: str | None = None,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> list[dict[str, Any]]:
        """
        List runs with their prompt run token summaries, newest first by default.

        ``cursor`` is a created_at timestamp; only older runs are returned.
        """
        if sort_by not in RUN_SORT_COLUMNS:
            raise ValueError(f"Cannot sort runs by {sort_by}")

        query = self.client.table("runs").select(RUN_LIST_SELECT)
        if flow_id:
            query = query.eq("flow_id", flow_id)
        if status:
            query = query.eq("status", status)
        if cursor:
            query = query.lt("created_at", cursor)

        result = query.order(sort_by, desc=sort_order != "asc").limit(limit).execute()
        return result.data or []

    def resolve_flow_id(self, identifier: str) -> str | None:
        """Resolve a flow by UUID or by slug (slugs are stored lowercase)."""
        if is_uuid(identifier):
            column, value = "id", identifier
        else:
            column, value = "slug", identifier.lower()

        result = self.client.table("flows").select("id").eq(column, value).limit(1).execute()
        return result.data[0]["id"] if result.data else None

    # ------------------------------------------------------------------
    # Prompt runs
    # ------------------------------------------------------------------

    def insert_prompt_run(self, fields: dict[str, Any]) -> dict[str, Any]:
        return self._insert("prompt_runs", fields)

    def update_prompt_run(self, prompt_run_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return self._update("prompt_runs", prompt_run_id, {**fields, "updated_at": utc_now_iso()})

    def list_prompt_runs(self, run_id: str) -> list[dict[str, Any]]:
        result = (
            self.client.table("prompt_runs")
            .select("*")
            .eq("run_id", run_id)
            .order("started_at")
            .execute()
        )
        return result.data or []

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def insert_run_webhook(self, fields: dict[str, Any]) -> dict[str, Any]:
        return self._insert("run_webhooks", fields)

    def update_run_webhook(self, webhook_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return self._update("run_webhooks", webhook_id, fields)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def insert_media(self, fields: dict[str, Any]) -> dict[str, Any]:
        return self._insert("media", fields)

    def find_video_for_source_image(self, source_image_id: str) -> dict[str, Any] | None:
        """Return an existing video generated from the given image, if any."""
        result = (
            self.client.table("media")
            .select("id, url")
            .eq("source_image_id", source_image_id)
            .eq("type", "video")
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    # ------------------------------------------------------------------

    def _insert(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        result = self.client.table(table).insert(fields).execute()
        if not result.data:
            raise PersistenceError(f"Insert into {table} returned no data")
        return result.data[0]

    def _update(self, table: str, row_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        result = self.client.table(table).update(fields).eq("id", row_id).execute()
        if not result.data:
            raise PersistenceError(f"Update of {table} row {row_id} returned no data")
        return result.data[0]


def get_run_store() -> RunStore:
    """FastAPI dependency returning the Supabase-backed store."""
    return RunStore()
