from datetime import datetime
from pydantic import BaseModel
from typing import Optional, Any, List, Literal

from .errors import ErrorKind

DispatchStatus = Literal["scheduled", "superseded", "skipped", "submitted", "failed"]

class DispatchResult(BaseModel):
    accepted: bool
    job_id: Optional[str] = None
    queue_position: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None

class HealthProbe(BaseModel):
    ok: bool
    status_code: Optional[int] = None
    stats: Optional[Any] = None
    detail: Optional[str] = None

class Artifact(BaseModel):
    name: str
    path: str  # absolute path on disk
    url: str  # public download URL
    size: int
    created: datetime
    modified: datetime

class CapturedAsset(BaseModel):
    generation: int
    filename: str
    path: str

class DispatchRecord(BaseModel):
    generation: int
    filename: str
    client_id: str
    status: DispatchStatus
    scheduled_at: float
    fire_at: float
    finished_at: Optional[float] = None
    result: Optional[DispatchResult] = None

class SaveFrameRequest(BaseModel):
    imageData: Optional[Any] = None

class SaveFrameResponse(BaseModel):
    success: bool
    message: str
    filename: str
    path: str
    generation: int
    comfyui_enabled: bool
    delay_seconds: float
    mesh_folder: str

class ModelsResponse(BaseModel):
    success: bool
    models: List[Artifact] = []
    count: int
    mesh_folder: str

class LatestModelResponse(BaseModel):
    success: bool
    model: Optional[Artifact] = None
    message: Optional[str] = None

class DispatchesResponse(BaseModel):
    success: bool
    dispatches: List[DispatchRecord] = []

class ComfyProbeResponse(BaseModel):
    success: bool
    message: str
    stats: Optional[Any] = None
