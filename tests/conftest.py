import base64
import io
import json

import httpx
import pytest
from PIL import Image

from capture_api.comfy_client import ComfyClient


@pytest.fixture
def jpeg_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (64, 48), (200, 80, 40)).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def data_url(jpeg_bytes):
    return "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode("ascii")


@pytest.fixture
def workflow():
    return {
        "1": {"class_type": "LoadImage", "inputs": {"image": "example.png", "upload": "image"}},
        "2": {"class_type": "Hy3DModelLoader", "inputs": {"model": "hy3dgen/model.safetensors"}},
        "3": {"class_type": "Hy3DGenerateMesh", "inputs": {"pipeline": ["2", 0], "image": ["1", 0], "steps": 30}},
        "4": {"class_type": "SaveGLB", "inputs": {"mesh": ["3", 0], "filename_prefix": "mesh/ComfyUI"}},
    }


class ComfyStub:
    """Scripted ComfyUI server behind an httpx.MockTransport."""

    def __init__(self, health_status=200, prompt_status=200, prompt_body=None, errors=None):
        self.health_status = health_status
        self.prompt_status = prompt_status
        self.prompt_body = prompt_body if prompt_body is not None else {"prompt_id": "abc-123", "number": 7}
        self.errors = errors or {}
        self.calls = []
        self.payloads = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if path in self.errors:
            raise self.errors[path](f"stubbed failure on {path}", request=request)
        if path == "/system_stats":
            return httpx.Response(self.health_status, json={"system": {"os": "nt"}, "devices": []})
        if path == "/prompt":
            self.payloads.append(json.loads(request.content))
            if isinstance(self.prompt_body, (dict, list)):
                return httpx.Response(self.prompt_status, json=self.prompt_body)
            return httpx.Response(self.prompt_status, text=self.prompt_body)
        return httpx.Response(404)

    @property
    def posts(self):
        return [c for c in self.calls if c[0] == "POST"]

    def client(self) -> ComfyClient:
        return ComfyClient("http://comfy.test", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def comfy_stub():
    return ComfyStub
