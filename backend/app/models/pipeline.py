"""
Pipeline models: flows, prompts, runs and the records produced while a run executes.

Rows come back from Supabase as plain dicts; these models validate them and
ignore any columns the pipeline does not care about.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator


EndpointType = Literal[
    "Chat",
    "ImageToImage",
    "ImageToVideo",
    "ImagesToVideos",
    "VideoToVideo",
    "AudioToText",
    "TextToAudio",
]
ENDPOINT_TYPES: tuple[str, ...] = get_args(EndpointType)

Provider = Literal["OpenAI", "Anthropic", "Gemini", "Stability"]

RunStatus = Literal["pending", "completed", "failed", "timed-out"]
TERMINAL_RUN_STATUSES = frozenset({"completed", "failed", "timed-out"})

PromptRunStatus = Literal["pending", "completed", "failed"]
WebhookEvent = Literal["run.completed", "run.failed"]
OutputType = Literal["image", "video", "audio", "text"]


class Prompt(BaseModel):
    """One step of a flow."""

    model_config = ConfigDict(extra="ignore")

    id: str
    flow_id: str | None = None
    position: int | None = 0
    # Kept as plain strings so unknown values reach dispatch and fail the step there.
    endpoint_type: str = "Chat"
    selected_provider: str = "OpenAI"
    selected_model: str | None = None

    # Chat
    system_prompt: str | None = None
    tools: list[dict[str, Any]] | None = Field(default_factory=list)

    # Image
    background_prompt: str | None = None
    foreground_prompt: str | None = None
    negative_prompt: str | None = None
    preserve_original_subject: float | None = None
    original_background_depth: float | None = None
    keep_original_background: bool | None = False
    light_source_direction: str | None = None
    light_source_strength: float | None = None
    seed: float | None = None
    output_format: str | None = None
    size: str | None = None
    quality: str | None = None

    # Video
    video_duration: int | None = None

    created_at: datetime | None = None


class Flow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str | None = None
    slug: str | None = None
    description: str | None = None
    prompts: list[Prompt] = Field(default_factory=list)

    @field_validator("prompts", mode="before")
    @classmethod
    def _null_to_list(cls, value: Any) -> Any:
        return value or []


class Run(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    flow_id: str | None = None
    source_run_id: str | None = None
    status: RunStatus = "pending"
    message: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    attachment_urls: list[str] = Field(default_factory=list)
    input_media_ids: list[str] = Field(default_factory=list)
    webhook_url: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    flow: Flow | None = None

    @field_validator("variables", "data", mode="before")
    @classmethod
    def _null_to_dict(cls, value: Any) -> Any:
        return value or {}

    @field_validator("attachment_urls", "input_media_ids", mode="before")
    @classmethod
    def _null_to_list(cls, value: Any) -> Any:
        return value or []

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def to_public(self, base_url: str) -> dict[str, Any]:
        """Public representation used by the API and webhook payloads."""
        return {
            "id": self.id,
            "flow_id": self.flow_id,
            "status": self.status,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "data": self.data or {},
            "url": f"{base_url.rstrip('/')}/api/v1/runs/{self.id}.json",
        }


class PromptRun(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    prompt_id: str | None = None
    run_id: str | None = None
    status: PromptRunStatus = "pending"
    selected_provider: str | None = None
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    response: dict[str, Any] | None = None
    input_media_ids: list[str] = Field(default_factory=list)
    output_media_ids: list[str] = Field(default_factory=list)
    source_attachment_urls: list[str] = Field(default_factory=list)
    attachment_urls: list[str] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class Media(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: Literal["image", "video"]
    filename: str
    url: str
    mime_type: str
    size: int
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    source_image_id: str | None = None


class RunWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    run_id: str
    event_type: WebhookEvent
    payload: dict[str, Any]
    endpoint_url: str
    status: Literal["pending", "delivered", "failed"] = "pending"
    attempt_count: int = 0
    last_attempted_at: datetime | None = None
    error_message: str | None = None


class TokenUsage(BaseModel):
    input: int | None = None
    output: int | None = None
    total: int | None = None


class StepResult(BaseModel):
    """Normalized output of one provider adapter call."""

    response: dict[str, Any] = Field(default_factory=dict)
    tokens: TokenUsage | None = None
    output_url: str | None = None
    output_media_id: str | None = None
    output_type: OutputType | None = None
    attachment_urls: list[str] = Field(default_factory=list)
    output_media_ids: list[str] = Field(default_factory=list)
    text: str | None = None


class RunExecutionResult(BaseModel):
    run_id: str
    status: RunStatus
    data: dict[str, Any] = Field(default_factory=dict)
    message: str | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
