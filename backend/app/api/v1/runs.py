"""
Runs API: list runs, create a run of a flow, inspect it, execute it and rerun it.

Creating or rerunning a run schedules its execution as a background task and
returns immediately with the pending run. ``POST /runs/{id}/execute`` runs the
pipeline inline and answers with the outcome.
"""
import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.db.store import RunStore, get_run_store, is_uuid, utc_now_iso
from app.models.pipeline import Run
from app.services.media_uploader import MediaUploader
from app.services.run_orchestrator import RunNotFoundError, execute_run
from app.services.webhook_notifier import public_base_url
from app.storage.base import ObjectStorage, get_object_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


class RunInput(BaseModel):
    flow_id: str
    message: Optional[str] = None
    webhook_url: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    attachment_urls: List[str] = Field(default_factory=list)
    input_media_ids: List[str] = Field(default_factory=list)
    # Older clients send a single input image instead of attachment_urls.
    input_image_url: Optional[str] = None


class CreateRunRequest(BaseModel):
    run: RunInput


class RerunRequest(BaseModel):
    flow_id: Optional[str] = None


class RunResponse(BaseModel):
    id: str
    flow_id: Optional[str] = None
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    url: str


class RunDetailResponse(RunResponse):
    prompt_runs: List[Dict[str, Any]] = Field(default_factory=list)


class PromptRunSummary(BaseModel):
    id: str
    status: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    selected_provider: Optional[str] = None
    model: Optional[str] = None


class RunListItem(RunResponse):
    prompt_runs: List[PromptRunSummary] = Field(default_factory=list)


class ExecuteRunResponse(BaseModel):
    status: str
    data: Dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None


class RerunResponse(BaseModel):
    id: str
    source_run_id: str
    status: str
    redirect_url: str


def _strip_json_suffix(run_id: str) -> str:
    return run_id[:-5] if run_id.endswith(".json") else run_id


async def _execute_in_background(run_id: str, store: RunStore, storage: ObjectStorage) -> None:
    try:
        await execute_run(run_id, store=store, uploader=MediaUploader(store, storage))
    except Exception:
        logger.exception("Background execution of run %s failed", run_id)


@router.post("", response_model=RunResponse, status_code=201)
async def create_run(
    request: CreateRunRequest,
    background_tasks: BackgroundTasks,
    store: RunStore = Depends(get_run_store),
    storage: ObjectStorage = Depends(get_object_storage),
):
    run_input = request.run
    try:
        flow_id = run_input.flow_id
        if not is_uuid(flow_id):
            flow_id = store.resolve_flow_id(flow_id)
            if not flow_id:
                raise HTTPException(status_code=404, detail="Flow not found")

        attachment_urls = list(run_input.attachment_urls)
        legacy_url = run_input.input_image_url
        if legacy_url and legacy_url not in attachment_urls:
            attachment_urls.insert(0, legacy_url)

        row = store.insert_run({
            "flow_id": flow_id,
            "message": run_input.message,
            "webhook_url": run_input.webhook_url,
            "variables": run_input.variables,
            "attachment_urls": attachment_urls,
            "input_media_ids": run_input.input_media_ids,
            "status": "pending",
            "started_at": utc_now_iso(),
            "data": {},
        })
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create run: {str(e)}")

    run = Run.model_validate(row)
    background_tasks.add_task(_execute_in_background, run.id, store, storage)
    logger.info("Created run %s for flow %s", run.id, flow_id)

    return run.to_public(public_base_url())


@router.get("", response_model=List[RunListItem])
async def list_runs(
    flow_id: Optional[str] = None,
    status: Optional[str] = None,
    cursor: Optional[str] = Query(None, description="Only runs created before this timestamp"),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Literal["created_at", "updated_at", "started_at", "completed_at", "status"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    store: RunStore = Depends(get_run_store),
):
    try:
        rows = store.list_runs(
            flow_id=flow_id,
            status=status,
            cursor=cursor,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list runs: {str(e)}")

    base_url = public_base_url()
    return [
        {**Run.model_validate(row).to_public(base_url), "prompt_runs": row.get("prompt_runs") or []}
        for row in rows
    ]


@router.get("/{run_id}", response_model=RunDetailResponse)
async def get_run(run_id: str, store: RunStore = Depends(get_run_store)):
    run_id = _strip_json_suffix(run_id)
    try:
        row = store.get_run(run_id)
        if not row:
            raise HTTPException(status_code=404, detail="Run not found")

        prompt_runs = store.list_prompt_runs(run_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get run: {str(e)}")

    return {
        **Run.model_validate(row).to_public(public_base_url()),
        "prompt_runs": prompt_runs,
    }


@router.post("/{run_id}/execute", response_model=ExecuteRunResponse)
async def execute_run_now(
    run_id: str,
    store: RunStore = Depends(get_run_store),
    storage: ObjectStorage = Depends(get_object_storage),
):
    run_id = _strip_json_suffix(run_id)
    try:
        result = await execute_run(run_id, store=store, uploader=MediaUploader(store, storage))
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to execute run: {str(e)}")

    return ExecuteRunResponse(status=result.status, data=result.data, message=result.message)


@router.post("/{run_id}/rerun", response_model=RerunResponse, status_code=201)
async def rerun(
    run_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[RerunRequest] = Body(None),
    store: RunStore = Depends(get_run_store),
    storage: ObjectStorage = Depends(get_object_storage),
):
    source_run_id = _strip_json_suffix(run_id)
    try:
        source = store.get_run(source_run_id)
        if not source:
            raise HTTPException(status_code=404, detail="Source run not found")

        flow_id = (request.flow_id if request else None) or source.get("flow_id")
        row = store.insert_run({
            "flow_id": flow_id,
            "message": source.get("message"),
            "variables": source.get("variables") or {},
            "attachment_urls": source.get("attachment_urls") or [],
            "input_media_ids": source.get("input_media_ids") or [],
            "webhook_url": source.get("webhook_url"),
            "source_run_id": source_run_id,
            "status": "pending",
            "started_at": utc_now_iso(),
            "data": {},
        })
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to rerun: {str(e)}")

    background_tasks.add_task(_execute_in_background, row["id"], store, storage)
    logger.info("Rerunning run %s as %s", source_run_id, row["id"])

    return RerunResponse(
        id=row["id"],
        source_run_id=source_run_id,
        status="pending",
        redirect_url=f"/runs/{row['id']}",
    )
