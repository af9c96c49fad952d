"""
Input handed to every provider adapter.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from app.models.pipeline import Prompt, Run

if TYPE_CHECKING:
    from app.services.media_uploader import MediaUploader


@dataclass
class StepRequest:
    """
    One step execution request.

    ``prompt`` has its template fields already rendered against the run's
    variables. ``input_image_url`` is the chaining value: the run's primary
    attachment for the first step, the previous step's output afterwards.
    ``attachment_urls`` is the run's full attachment list.
    """

    prompt: Prompt
    run: Run
    input_image_url: str | None
    uploader: "MediaUploader"
    attachment_urls: list[str] = field(default_factory=list)

    @property
    def variables(self) -> dict[str, Any]:
        return self.run.variables or {}

    @property
    def model(self) -> str | None:
        return self.prompt.selected_model or None

    @property
    def image_urls(self) -> list[str]:
        """
        Media inputs for the step: the chaining value followed by the run's
        secondary attachments (everything after the primary one).
        """
        urls: list[str] = []
        candidates = [self.input_image_url, *self.attachment_urls[1:]]
        for url in candidates:
            if url and url not in urls:
                urls.append(url)
        return urls
