import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.environ.get(name, default))


class Settings(BaseModel):
    input_dir: Path = Path("./comfyui/input")
    models_dir: Path = Path("./public/models")
    mesh_subfolder: Optional[str] = "mesh"
    comfyui_api_url: str = "http://127.0.0.1:8188"
    workflow_file: Path = Path("./workflow.json")
    prompt_delay_seconds: float = 5.0
    input_filename: str = "webcam_input.jpg"
    output_prefix: str = "webcam_3d_mesh"
    artifact_extension: str = ".glb"
    # served by the /mesh/{name} route whatever the subfolder is called
    mesh_url_prefix: str = "/mesh"
    health_timeout: float = 5.0
    submit_timeout: float = 10.0
    keep_generations: int = 4
    capture_max_side: int = 0
    max_capture_bytes: int = 10 * 1024 * 1024
    dispatch_history_size: int = 50
    log_level: str = "INFO"

    @property
    def mesh_dir(self) -> Path:
        if self.mesh_subfolder:
            return self.models_dir / self.mesh_subfolder
        return self.models_dir

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            input_dir=Path(os.environ.get("COMFYUI_INPUT_DIR", "./comfyui/input")).resolve(),
            models_dir=Path(os.environ.get("MODELS_DIR", "./public/models")).resolve(),
            mesh_subfolder=os.environ.get("MESH_SUBFOLDER", "mesh") or None,
            comfyui_api_url=os.environ.get("COMFYUI_API_URL", "http://127.0.0.1:8188").rstrip("/"),
            workflow_file=Path(os.environ.get("COMFYUI_WORKFLOW_FILE", "./workflow.json")),
            prompt_delay_seconds=_env_float("PROMPT_DELAY_SECONDS", "5"),
            input_filename=os.environ.get("INPUT_FILENAME", "webcam_input.jpg"),
            output_prefix=os.environ.get("OUTPUT_PREFIX", "webcam_3d_mesh"),
            artifact_extension=os.environ.get("MODEL_EXTENSION", ".glb"),
            health_timeout=_env_float("COMFYUI_HEALTH_TIMEOUT", "5"),
            submit_timeout=_env_float("COMFYUI_SUBMIT_TIMEOUT", "10"),
            keep_generations=_env_int("CAPTURE_KEEP_GENERATIONS", "4"),
            capture_max_side=_env_int("CAPTURE_MAX_SIDE", "0"),
            max_capture_bytes=_env_int("MAX_CAPTURE_BYTES", str(10 * 1024 * 1024)),
            dispatch_history_size=_env_int("DISPATCH_HISTORY_SIZE", "50"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
