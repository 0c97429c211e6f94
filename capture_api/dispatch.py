import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set

from .comfy_client import ComfyClient, new_client_id
from .errors import ErrorKind
from .models import CapturedAsset, DispatchRecord, DispatchResult
from .templates import patch_template

log = logging.getLogger(__name__)


class DispatchScheduler:
    """Deferred submission of patched workflows, one pending slot.

    A capture schedules a dispatch that fires after ``delay_seconds``. A newer
    capture replaces a dispatch that has not fired yet (last writer wins); a
    dispatch that has already fired always runs to completion. Outcomes are
    logged and kept in a bounded history, never raised.
    """

    def __init__(
        self,
        client: ComfyClient,
        template: Dict[str, Any],
        *,
        output_prefix: str,
        mesh_subfolder: Optional[str] = None,
        history_size: int = 50,
    ):
        self.client = client
        self.template = template
        self.output_prefix = output_prefix
        self.mesh_subfolder = mesh_subfolder
        self.history_size = max(1, history_size)
        self._records: "OrderedDict[int, DispatchRecord]" = OrderedDict()
        self._pending: Optional[int] = None
        self._pending_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.template)

    @property
    def pending_generation(self) -> Optional[int]:
        return self._pending

    def records(self) -> List[DispatchRecord]:
        return list(self._records.values())

    def get(self, generation: int) -> Optional[DispatchRecord]:
        return self._records.get(generation)

    def _remember(self, record: DispatchRecord) -> None:
        self._records[record.generation] = record
        while len(self._records) > self.history_size:
            self._records.popitem(last=False)

    def _set(self, generation: int, **kwargs) -> None:
        record = self._records.get(generation)
        if not record:
            return
        for k, v in kwargs.items():
            setattr(record, k, v)

    def _supersede_pending(self, by_generation: int) -> None:
        if self._pending_task is None or self._pending_task.done():
            return
        self._pending_task.cancel()
        self._set(
            self._pending,
            status="superseded",
            finished_at=time.time(),
            result=DispatchResult(accepted=False, detail=f"replaced by generation {by_generation}"),
        )
        log.info("Pending dispatch for generation %s replaced by generation %s", self._pending, by_generation)

    def schedule(self, asset: CapturedAsset, delay_seconds: float) -> DispatchRecord:
        now = time.time()
        record = DispatchRecord(
            generation=asset.generation,
            filename=asset.filename,
            client_id=new_client_id(f"g{asset.generation}"),
            status="scheduled",
            scheduled_at=now,
            fire_at=now + max(0.0, delay_seconds),
        )

        if not self.enabled:
            record.status = "skipped"
            record.finished_at = now
            record.result = DispatchResult(
                accepted=False,
                error_kind=ErrorKind.TEMPLATE_MISSING,
                detail="no workflow template loaded",
            )
            self._remember(record)
            log.info("No workflow loaded, skipping ComfyUI processing for %s", asset.filename)
            return record

        self._supersede_pending(asset.generation)
        self._remember(record)

        task = asyncio.get_running_loop().create_task(
            self._fire(record.generation, asset.filename, record.client_id, delay_seconds)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._pending = record.generation
        self._pending_task = task
        log.info("Waiting %s seconds before queuing ComfyUI workflow for %s", delay_seconds, asset.filename)
        return record

    async def _fire(self, generation: int, asset_name: str, client_id: str, delay_seconds: float) -> None:
        await asyncio.sleep(max(0.0, delay_seconds))

        # Past this point the dispatch can no longer be replaced.
        if self._pending == generation:
            self._pending = None
            self._pending_task = None

        try:
            job = patch_template(
                self.template,
                asset_name,
                output_prefix=self.output_prefix,
                mesh_subfolder=self.mesh_subfolder,
            )
            result = await self.client.submit(job, client_id)
        except asyncio.CancelledError:
            self._set(
                generation,
                status="failed",
                finished_at=time.time(),
                result=DispatchResult(accepted=False, detail="cancelled at shutdown"),
            )
            raise
        except Exception as exc:
            log.exception("Dispatch for generation %s failed", generation)
            result = DispatchResult(accepted=False, detail=f"{type(exc).__name__}: {exc}")

        self._set(
            generation,
            status="submitted" if result.accepted else "failed",
            finished_at=time.time(),
            result=result,
        )
        if result.accepted:
            log.info(
                "ComfyUI workflow queued for %s: prompt_id=%s queue_number=%s",
                asset_name,
                result.job_id,
                result.queue_position,
            )
        else:
            kind = result.error_kind.value if result.error_kind else "error"
            log.warning("Failed to queue ComfyUI workflow for %s (%s): %s", asset_name, kind, result.detail)

    async def join(self) -> None:
        """Wait for every scheduled dispatch to finish or be cancelled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._pending is not None:
            self._set(
                self._pending,
                status="failed",
                finished_at=time.time(),
                result=DispatchResult(accepted=False, detail="cancelled at shutdown"),
            )
            self._pending = None
            self._pending_task = None
        await self.join()
