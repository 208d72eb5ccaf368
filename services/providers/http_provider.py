"""
HTTP Media Provider - Kie AI market API adapter

One adapter instance per backend model routed through the aggregator:
    sora   -> sora2/text-to-video
    runway -> runway-aleph/text-to-video
    domoai -> hailuo-i2v/text-to-video
    kling  -> kling-2.6/text-to-video

submit() creates a task and returns immediately; poll() reads the task record
once. Transient transport errors are retried a few times with tenacity before
being surfaced as ProviderUnavailable.
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import ProviderConfig
from core.errors import InvalidRequest, ProviderUnavailable

from .base import PollResult, ProviderHandle, ProviderStatus

if TYPE_CHECKING:
    from services.queue.models import JobSpec

logger = logging.getLogger(__name__)


# Market API model names per provider
MODEL_MAPPINGS: dict[str, str] = {
    "sora": "sora2/text-to-video",
    "runway": "runway-aleph/text-to-video",
    "domoai": "hailuo-i2v/text-to-video",
    "kling": "kling-2.6/text-to-video",
}

# Kie record states -> provider status
STATE_MAP: dict[str, ProviderStatus] = {
    "waiting": ProviderStatus.QUEUED,
    "queuing": ProviderStatus.QUEUED,
    "generating": ProviderStatus.PROCESSING,
    "success": ProviderStatus.COMPLETED,
    "fail": ProviderStatus.FAILED,
    "failed": ProviderStatus.FAILED,
}


class HttpMediaProvider:
    """
    Aggregator-backed provider.

    Usage:
        provider = HttpMediaProvider("sora", api_key=KIE_API_KEY)
        handle = await provider.submit(spec, "job-1:0")
        status = await provider.poll(handle)
    """

    def __init__(
        self,
        name: str,
        api_key: str,
        api_base: str = "https://api.kie.ai/api/v1",
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.name = name
        self.model = model or MODEL_MAPPINGS.get(name, f"{name}/text-to-video")
        self.api_base = api_base.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        return await client.request(
            method,
            f"{self.api_base}{path}",
            headers=self.headers,
            **kwargs,
        )

    async def _call(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        """Make a request and unwrap the ``{"code", "msg", "data"}`` envelope."""
        try:
            response = await self._request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(
                f"{self.name} API timeout: {type(e).__name__}",
                error_code="API_TIMEOUT",
                provider=self.name,
            ) from e
        except httpx.RequestError as e:
            raise ProviderUnavailable(
                f"{self.name} API request failed: {type(e).__name__}: {e}",
                error_code="REQUEST_ERROR",
                provider=self.name,
            ) from e

        if response.status_code in (400, 404, 422):
            raise InvalidRequest(
                f"{self.name} API rejected request: {response.text[:200]}",
                error_code=f"HTTP_{response.status_code}",
                provider=self.name,
            )
        if response.status_code >= 300:
            raise ProviderUnavailable(
                f"{self.name} API returned HTTP {response.status_code}",
                error_code=f"HTTP_{response.status_code}",
                provider=self.name,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderUnavailable(
                f"{self.name} API returned invalid JSON",
                error_code="BAD_RESPONSE",
                provider=self.name,
            ) from e

        code = data.get("code")
        if code == 200:
            return data.get("data") or {}

        error_msg = data.get("msg", "Unknown error")
        if code in (400, 422):
            raise InvalidRequest(
                f"{self.name} API error: {error_msg}",
                error_code=f"KIE_{code}",
                provider=self.name,
            )
        raise ProviderUnavailable(
            f"{self.name} API error: {error_msg}",
            error_code=f"KIE_{code}",
            provider=self.name,
        )

    def _build_payload(self, spec: "JobSpec", idempotency_key: str) -> dict[str, Any]:
        # Market API only accepts 5 or 10 second clips
        duration = "5" if spec.duration_seconds <= 7 else "10"
        prompt = spec.prompt or (
            f"{spec.content_type.value.replace('-', ' ')} in {spec.visual_style} style"
        )
        payload = {
            "model": self.model,
            "input": {
                "prompt": prompt,
                "duration": duration,
                "aspect_ratio": "16:9",
                "sound": spec.music_sync,
            },
            "idempotencyKey": idempotency_key,
        }
        return payload

    async def submit(self, spec: "JobSpec", idempotency_key: str) -> ProviderHandle:
        payload = self._build_payload(spec, idempotency_key)
        logger.info(f"{self.name} createTask: model={self.model}, key={idempotency_key}")

        data = await self._call("POST", "/jobs/createTask", json=payload)
        task_id = data.get("taskId")
        if not task_id:
            raise ProviderUnavailable(
                f"No taskId in {self.name} response",
                error_code="NO_TASK_ID",
                provider=self.name,
            )

        return ProviderHandle(
            provider=self.name,
            handle_id=task_id,
            idempotency_key=idempotency_key,
        )

    async def poll(self, handle: ProviderHandle) -> PollResult:
        record = await self._call(
            "GET",
            "/jobs/recordInfo",
            params={"taskId": handle.handle_id},
        )
        state = (record.get("state") or "").lower()
        status = STATE_MAP.get(state, ProviderStatus.PROCESSING)

        if status == ProviderStatus.COMPLETED:
            result_json_str = record.get("resultJson") or "{}"
            try:
                output_urls = json.loads(result_json_str).get("resultUrls", [])
            except json.JSONDecodeError:
                logger.warning(f"Failed to parse resultJson: {result_json_str[:100]}")
                output_urls = []
            return PollResult(
                status=status,
                result_url=output_urls[0] if output_urls else None,
            )

        if status == ProviderStatus.FAILED:
            return PollResult(
                status=status,
                error=record.get("failMsg") or "Generation failed (no specific reason)",
            )

        return PollResult(status=status)

    async def cancel(self, handle: ProviderHandle) -> None:
        # The market API has no cancel endpoint; billing continues provider-side
        logger.info(f"{self.name} task {handle.handle_id} abandoned (no remote cancel)")


def build_http_providers(
    config: ProviderConfig,
    client: Optional[httpx.AsyncClient] = None,
) -> list[HttpMediaProvider]:
    """One adapter per provider in the fallback order, sharing one client."""
    if not config.kie_api_key:
        raise ValueError("KIE_API_KEY is required for HTTP providers")
    return [
        HttpMediaProvider(
            name,
            api_key=config.kie_api_key,
            api_base=config.kie_api_base,
            client=client,
        )
        for name in config.fallback_order
    ]
