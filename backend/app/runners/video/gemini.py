"""
Image-to-video generation with Veo on Vertex AI.

Vertex needs an OAuth access token. It is taken from GOOGLE_CLOUD_ACCESS_TOKEN
when set, otherwise minted from the service account in
GOOGLE_APPLICATION_CREDENTIALS_JSON with a signed JWT assertion.
"""
import base64
import json
import logging
import os
import re
import time
from urllib.parse import quote

import httpx
import jwt

from app.models.pipeline import StepResult
from app.runners.errors import ConfigurationError, ProviderError
from app.runners.media import content_type_from_url, download_bytes
from app.runners.polling import poll_until_done
from app.runners.registry import runner
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "veo-3.0-generate-001"
DEFAULT_DURATION_SECONDS = 8
DEFAULT_LOCATION = "us-central1"
DEFAULT_PROMPT = "Generate a video from this image"

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_ATTEMPTS = 120

REQUEST_TIMEOUT = httpx.Timeout(120.0, connect=20.0)

_OPERATION_MODEL_PATH = re.compile(r"^(.*?)/operations/")
_GCS_URI = re.compile(r"^gs://([^/]+)/(.+)$")


def vertex_base_url() -> str:
    location = os.getenv("GOOGLE_CLOUD_LOCATION") or DEFAULT_LOCATION
    return f"https://{location}-aiplatform.googleapis.com/v1"


def build_jwt_assertion(credentials: dict, now: int | None = None) -> str:
    issued_at = int(time.time()) if now is None else now
    claims = {
        "iss": credentials["client_email"],
        "scope": CLOUD_PLATFORM_SCOPE,
        "aud": credentials.get("token_uri") or DEFAULT_TOKEN_URI,
        "iat": issued_at,
        "exp": issued_at + 3600,
    }
    return jwt.encode(claims, credentials["private_key"], algorithm="RS256")


async def get_access_token() -> str:
    token = os.getenv("GOOGLE_CLOUD_ACCESS_TOKEN")
    if token:
        return token

    raw = os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")
    if not raw:
        raise ConfigurationError("No Google Cloud credentials available")

    try:
        # strict=False tolerates raw newlines inside private_key
        credentials = json.loads(raw, strict=False)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid GOOGLE_APPLICATION_CREDENTIALS_JSON: {e}")

    token_uri = credentials.get("token_uri") or DEFAULT_TOKEN_URI
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
        response = await client.post(
            token_uri,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": build_jwt_assertion(credentials)},
        )
    if response.status_code >= 400:
        raise ConfigurationError(f"Token exchange failed: {response.status_code}")
    return response.json()["access_token"]


async def download_from_gcs(gcs_uri: str, access_token: str) -> bytes:
    match = _GCS_URI.match(gcs_uri)
    if not match:
        raise ProviderError(f"Invalid GCS URI: {gcs_uri}")
    bucket, obj = match.groups()
    url = f"https://storage.googleapis.com/storage/v1/b/{bucket}/o/{quote(obj, safe='')}?alt=media"
    data, _ = await download_bytes(url, headers={"Authorization": f"Bearer {access_token}"})
    return data


def sanitize_operation(operation_name: str, body: dict) -> dict:
    """Strip base64 video bytes from a finished operation before it is stored."""
    sanitized: dict = {"operationName": operation_name, "status": "complete"}
    for key in ("videos", "predictions"):
        items = body.get(key)
        if items is None:
            continue
        sanitized[key] = [
            {**item, "bytesBase64Encoded": "[REDACTED]"} if item.get("bytesBase64Encoded") else item
            for item in items
        ]
    if body.get("raiMediaFilteredReasons"):
        sanitized["raiMediaFilteredReasons"] = body["raiMediaFilteredReasons"]
    return sanitized


async def _poll_operation(client: httpx.AsyncClient, headers: dict, operation_name: str) -> dict:
    match = _OPERATION_MODEL_PATH.match(operation_name)
    if not match:
        raise ProviderError(f"Invalid operation name format: {operation_name}")
    poll_url = f"{vertex_base_url()}/{match.group(1)}:fetchPredictOperation"

    async def check(attempt: int) -> dict | None:
        response = await client.post(poll_url, headers=headers, json={"operationName": operation_name})
        if response.status_code >= 400:
            logger.warning("Veo polling error: %s - %s", response.status_code, response.text[:500])
            return None

        data = response.json()
        if not data.get("done"):
            return None
        if data.get("error"):
            raise ProviderError(f"Video generation failed: {data['error'].get('message')}")
        return data

    return await poll_until_done(
        check,
        max_attempts=MAX_POLL_ATTEMPTS,
        interval_seconds=POLL_INTERVAL_SECONDS,
        description="Video generation",
    )


@runner("ImageToVideo", "Gemini")
async def run_video_gemini(request: StepRequest, *, source_image_id: str | None = None) -> StepResult:
    project_id = os.getenv("GOOGLE_CLOUD_PROJECT_ID")
    if not project_id:
        raise ConfigurationError("GOOGLE_CLOUD_PROJECT_ID environment variable is not set")
    if not request.input_image_url:
        raise ProviderError("Input image URL is required for video generation")

    access_token = await get_access_token()
    image_bytes, _ = await download_bytes(request.input_image_url)

    model = request.model or DEFAULT_MODEL
    location = os.getenv("GOOGLE_CLOUD_LOCATION") or DEFAULT_LOCATION
    url = (
        f"{vertex_base_url()}/projects/{project_id}/locations/{location}"
        f"/publishers/google/models/{model}:predictLongRunning"
    )
    payload = {
        "instances": [
            {
                "image": {
                    "bytesBase64Encoded": base64.b64encode(image_bytes).decode("utf-8"),
                    "mimeType": content_type_from_url(request.input_image_url),
                },
                "prompt": request.prompt.system_prompt or DEFAULT_PROMPT,
            }
        ],
        "parameters": {
            "sampleCount": 1,
            "durationSeconds": request.prompt.video_duration or DEFAULT_DURATION_SECONDS,
            "includeRaiReason": True,
        },
    }
    headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
        response = await client.post(url, headers=headers, json=payload)
        if response.status_code >= 400:
            logger.error("Vertex AI error: %s", response.text[:500])
            raise ProviderError(f"Vertex AI error: {response.status_code} - {response.text[:500]}")

        operation_name = response.json()["name"]
        logger.info("Started Veo operation %s", operation_name)
        operation = await _poll_operation(client, headers, operation_name)

    body = operation.get("response") or {}
    items = body.get("videos") or body.get("predictions") or []
    if not items:
        logger.error("No video data found. Response keys: %s", list(body.keys()))
        raise ProviderError("No video data in response")

    item = items[0]
    if item.get("bytesBase64Encoded"):
        video = base64.b64decode(item["bytesBase64Encoded"])
    elif item.get("gcsUri"):
        video = await download_from_gcs(item["gcsUri"], access_token)
    else:
        raise ProviderError("No video data in response")

    uploaded = await request.uploader.upload(
        video,
        f"gemini_video_{int(time.time() * 1000)}.mp4",
        "video/mp4",
        source_image_id=source_image_id,
    )

    return StepResult(
        response=sanitize_operation(operation_name, body),
        output_url=uploaded.url,
        output_media_id=uploaded.media_id,
        output_type="video",
        attachment_urls=[uploaded.url],
        output_media_ids=[uploaded.media_id],
    )
