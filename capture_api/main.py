import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from .artifacts import latest_artifact, list_artifacts, resolve_artifact
from .comfy_client import ComfyClient
from .dispatch import DispatchScheduler
from .errors import CaptureError
from .models import (
    ComfyProbeResponse,
    DispatchesResponse,
    LatestModelResponse,
    ModelsResponse,
    SaveFrameRequest,
    SaveFrameResponse,
)
from .settings import Settings, configure_logging
from .storage import AssetSlot, decode_data_url, prepare_capture
from .templates import load_template

log = logging.getLogger(__name__)

START_TS = time.time()

MEDIA_TYPES = {
    ".glb": "model/gltf-binary",
    ".gltf": "model/gltf+json",
}

router = APIRouter()


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _models(settings: Settings):
    return list_artifacts(settings.mesh_dir, settings.artifact_extension, settings.mesh_url_prefix)


@router.post("/save-frame", status_code=202, response_model=SaveFrameResponse)
async def save_frame(payload: SaveFrameRequest, request: Request):
    settings = _settings(request)
    slot: AssetSlot = request.app.state.slot
    scheduler: DispatchScheduler = request.app.state.scheduler

    if not payload.imageData:
        return JSONResponse(status_code=400, content={"error": "Missing imageData"})

    raw = decode_data_url(payload.imageData, settings.max_capture_bytes)
    data = prepare_capture(raw, settings.capture_max_side)
    try:
        asset = slot.write(data)
    except OSError as exc:
        log.error("Error saving frame: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to save frame"})

    scheduler.schedule(asset, settings.prompt_delay_seconds)

    return SaveFrameResponse(
        success=True,
        message=f"Frame saved to {asset.path}",
        filename=asset.filename,
        path=asset.path,
        generation=asset.generation,
        comfyui_enabled=scheduler.enabled,
        delay_seconds=settings.prompt_delay_seconds,
        mesh_folder=str(settings.mesh_dir),
    )


@router.get("/models", response_model=ModelsResponse)
def models(request: Request):
    settings = _settings(request)
    found = _models(settings)
    log.info("Listing %d models", len(found))
    return ModelsResponse(success=True, models=found, count=len(found), mesh_folder=str(settings.mesh_dir))


@router.get("/latest-model", response_model=LatestModelResponse, response_model_exclude_none=True)
def latest_model(request: Request):
    settings = _settings(request)
    latest = latest_artifact(settings.mesh_dir, settings.artifact_extension, settings.mesh_url_prefix)
    if latest is None:
        return LatestModelResponse(success=False, message="No GLB models found")
    return LatestModelResponse(success=True, model=latest)


@router.get("/mesh/{name}")
def get_mesh(name: str, request: Request):
    settings = _settings(request)
    p = resolve_artifact(settings.mesh_dir, name, settings.artifact_extension)
    if p is None:
        raise HTTPException(status_code=404, detail="artifact not found")
    return FileResponse(str(p), filename=p.name, media_type=MEDIA_TYPES.get(p.suffix.lower()))


@router.get("/dispatches", response_model=DispatchesResponse)
def dispatches(request: Request):
    scheduler: DispatchScheduler = request.app.state.scheduler
    return DispatchesResponse(success=True, dispatches=scheduler.records())


@router.get("/config")
def config(request: Request):
    settings = _settings(request)
    scheduler: DispatchScheduler = request.app.state.scheduler
    return {
        "saveLocation": str(settings.input_dir),
        "outputLocation": str(settings.models_dir),
        "meshFolder": str(settings.mesh_dir),
        "comfyuiApiUrl": settings.comfyui_api_url,
        "workflowLoaded": scheduler.enabled,
        "workflowNodes": len(scheduler.template),
        "delaySeconds": settings.prompt_delay_seconds,
        "inputFilename": settings.input_filename,
        "outputPrefix": settings.output_prefix,
        "modelExtension": settings.artifact_extension,
        "inputExists": settings.input_dir.is_dir(),
        "outputExists": settings.models_dir.is_dir(),
        "meshFolderExists": settings.mesh_dir.is_dir(),
    }


@router.get("/health")
def health(request: Request):
    settings = _settings(request)
    paths = {
        "input": settings.input_dir,
        "output": settings.models_dir,
        "mesh": settings.mesh_dir,
    }
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.time() - START_TS,
        "paths": {k: str(v) for k, v in paths.items()},
        "pathsExist": {k: v.is_dir() for k, v in paths.items()},
    }


@router.get("/test-comfyui", response_model=ComfyProbeResponse, response_model_exclude_none=True)
async def test_comfyui(request: Request):
    client: ComfyClient = request.app.state.client
    probe = await client.probe()
    if probe.ok:
        return ComfyProbeResponse(success=True, message="ComfyUI is running", stats=probe.stats)
    return ComfyProbeResponse(success=False, message=probe.detail or "ComfyUI is not responding")


@router.get("/debug-models")
def debug_models(request: Request):
    settings = _settings(request)
    mesh_dir = settings.mesh_dir
    info = {
        "configuredPaths": {
            "comfyuiOutput": str(settings.models_dir),
            "meshFolder": str(mesh_dir),
            "outputPrefix": settings.output_prefix,
        },
        "pathStatus": {
            "outputExists": settings.models_dir.is_dir(),
            "meshExists": mesh_dir.is_dir(),
        },
        "foundFiles": [],
    }
    if mesh_dir.is_dir():
        names = sorted(os.listdir(mesh_dir))
        info["allFiles"] = names
        for name in names:
            full = mesh_dir / name
            try:
                st = full.stat()
            except FileNotFoundError:
                continue
            info["foundFiles"].append(
                {
                    "name": name,
                    "fullPath": str(full),
                    "url": f"{settings.mesh_url_prefix}/{name}",
                    "size": st.st_size,
                    "created": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
                    "isModel": name.lower().endswith(settings.artifact_extension.lower()),
                }
            )
    return info


def _log_startup(settings: Settings, template: dict) -> None:
    log.info("Input frames: %s", settings.input_dir)
    log.info("Mesh folder: %s", settings.mesh_dir)
    log.info("ComfyUI API URL: %s", settings.comfyui_api_url)
    log.info("Workflow delay: %s seconds", settings.prompt_delay_seconds)
    found = _models(settings)
    if found:
        log.info("Found %d existing 3D model(s), newest %s", len(found), found[0].name)
    else:
        log.info("No existing 3D models found in %s", settings.mesh_dir)
    if not template:
        log.warning("No workflow loaded. Create %s to enable automatic prompting.", settings.workflow_file)


def create_app(settings: Optional[Settings] = None, client: Optional[ComfyClient] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    template = load_template(settings.workflow_file)
    client = client or ComfyClient(
        settings.comfyui_api_url,
        health_timeout=settings.health_timeout,
        submit_timeout=settings.submit_timeout,
    )
    scheduler = DispatchScheduler(
        client,
        template,
        output_prefix=settings.output_prefix,
        mesh_subfolder=settings.mesh_subfolder,
        history_size=settings.dispatch_history_size,
    )
    slot = AssetSlot(settings.input_dir, settings.input_filename, keep=settings.keep_generations)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log_startup(settings, template)
        yield
        log.info("Shutting down, cancelling pending dispatches")
        await scheduler.aclose()
        await client.aclose()

    app = FastAPI(title="Webcam ComfyUI 3D Capture API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.client = client
    app.state.scheduler = scheduler
    app.state.slot = slot

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(CaptureError)
    async def capture_error(request: Request, exc: CaptureError):
        log.warning("Rejected capture (%s): %s", exc.kind.value, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc), "kind": exc.kind.value})

    app.include_router(router)
    return app


def run() -> None:
    uvicorn.run(
        "capture_api.main:create_app",
        factory=True,
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "3000")),
    )


if __name__ == "__main__":
    run()
