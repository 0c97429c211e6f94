import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx

from .errors import ErrorKind
from .models import DispatchResult, HealthProbe

log = logging.getLogger(__name__)

USER_AGENT = "webcam-comfyui-app"


def new_client_id(tag: Optional[str] = None) -> str:
    stamp = f"webcam_app_{int(time.time() * 1000)}"
    if tag:
        stamp = f"{stamp}_{tag}"
    return f"{stamp}_{uuid.uuid4().hex[:8]}"


def _optional_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ComfyClient:
    """Health probe and job submission against a ComfyUI server.

    One attempt per call, no retries. Every failure comes back as a value,
    never as an exception.
    """

    def __init__(
        self,
        base_url: str,
        *,
        health_timeout: float = 5.0,
        submit_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.health_timeout = health_timeout
        self.submit_timeout = submit_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            trust_env=False,
            headers={"User-Agent": USER_AGENT},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def probe(self) -> HealthProbe:
        try:
            r = await self._client.get("/system_stats", timeout=self.health_timeout)
        except httpx.TransportError as exc:
            log.warning("Cannot connect to ComfyUI at %s: %s", self.base_url, exc)
            return HealthProbe(ok=False, detail=f"Cannot connect to ComfyUI: {exc!r}")

        if not r.is_success:
            log.warning("ComfyUI health check returned status %s", r.status_code)
            return HealthProbe(
                ok=False,
                status_code=r.status_code,
                detail=f"ComfyUI returned status: {r.status_code}",
            )

        try:
            stats = r.json()
        except ValueError:
            stats = r.text
        return HealthProbe(ok=True, status_code=r.status_code, stats=stats)

    async def health_check(self) -> bool:
        return (await self.probe()).ok

    async def submit(self, job: Dict[str, Any], client_id: Optional[str] = None) -> DispatchResult:
        health = await self.probe()
        if not health.ok:
            return DispatchResult(
                accepted=False,
                error_kind=ErrorKind.SERVICE_UNAVAILABLE,
                detail=health.detail,
            )

        payload = {"prompt": job, "client_id": client_id or new_client_id()}
        log.info("Sending workflow to ComfyUI (client_id=%s, %d nodes)", payload["client_id"], len(job))
        try:
            r = await self._client.post("/prompt", json=payload, timeout=self.submit_timeout)
        except httpx.TransportError as exc:
            log.warning("ComfyUI /prompt unreachable: %s", exc)
            return DispatchResult(
                accepted=False,
                error_kind=ErrorKind.UNREACHABLE,
                detail=f"{type(exc).__name__}: {exc}",
            )

        if not r.is_success:
            body = r.text or ""
            log.warning("ComfyUI rejected prompt: %s %s", r.status_code, body[:500])
            return DispatchResult(
                accepted=False,
                error_kind=ErrorKind.REMOTE_REJECTED,
                detail=body,
            )

        try:
            body = r.json()
        except ValueError:
            return DispatchResult(accepted=True, detail=f"unparseable /prompt response: {r.text[:200]}")
        if not isinstance(body, dict):
            return DispatchResult(accepted=True, detail=f"unexpected /prompt response: {body!r}")

        prompt_id = body.get("prompt_id")
        return DispatchResult(
            accepted=True,
            job_id=str(prompt_id) if prompt_id is not None else None,
            queue_position=_optional_int(body.get("number")),
        )
