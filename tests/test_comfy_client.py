import asyncio

import httpx

from capture_api.comfy_client import new_client_id
from capture_api.errors import ErrorKind


def _run(stub, method, *args):
    async def go():
        client = stub.client()
        try:
            return await getattr(client, method)(*args)
        finally:
            await client.aclose()

    return asyncio.run(go())


def test_health_check_ok(comfy_stub):
    stub = comfy_stub()
    assert _run(stub, "health_check") is True
    assert stub.calls == [("GET", "/system_stats")]


def test_probe_keeps_stats(comfy_stub):
    probe = _run(comfy_stub(), "probe")
    assert probe.ok
    assert probe.stats["system"]["os"] == "nt"


def test_health_check_non_success_status(comfy_stub):
    probe = _run(comfy_stub(health_status=503), "probe")
    assert probe.ok is False
    assert probe.status_code == 503
    assert "503" in probe.detail


def test_health_check_connection_refused(comfy_stub):
    stub = comfy_stub(errors={"/system_stats": httpx.ConnectError})
    probe = _run(stub, "probe")
    assert probe.ok is False
    assert probe.status_code is None
    assert probe.detail.startswith("Cannot connect to ComfyUI")
    assert _run(stub, "health_check") is False


def test_submit_is_health_gated(comfy_stub, workflow):
    stub = comfy_stub(health_status=500)
    result = _run(stub, "submit", workflow, "cid-1")
    assert result.accepted is False
    assert result.error_kind == ErrorKind.SERVICE_UNAVAILABLE
    assert stub.posts == []


def test_submit_unreachable_health_never_posts(comfy_stub, workflow):
    stub = comfy_stub(errors={"/system_stats": httpx.ConnectError})
    result = _run(stub, "submit", workflow, "cid-1")
    assert result.error_kind == ErrorKind.SERVICE_UNAVAILABLE
    assert len(stub.posts) == 0


def test_submit_success(comfy_stub, workflow):
    stub = comfy_stub(prompt_body={"prompt_id": "p-42", "number": 3, "node_errors": {}})
    result = _run(stub, "submit", workflow, "cid-1")
    assert result.accepted is True
    assert result.job_id == "p-42"
    assert result.queue_position == 3
    assert result.error_kind is None
    assert stub.payloads == [{"prompt": workflow, "client_id": "cid-1"}]


def test_submit_generates_client_id(comfy_stub, workflow):
    stub = comfy_stub()
    _run(stub, "submit", workflow)
    assert stub.payloads[0]["client_id"].startswith("webcam_app_")


def test_submit_remote_rejection_keeps_body(comfy_stub, workflow):
    body = '{"error": {"type": "prompt_outputs_failed_validation"}}'
    stub = comfy_stub(prompt_status=500, prompt_body=body)
    result = _run(stub, "submit", workflow, "cid-1")
    assert result.accepted is False
    assert result.error_kind == ErrorKind.REMOTE_REJECTED
    assert result.detail == body
    assert len(stub.posts) == 1


def test_submit_timeout_is_unreachable(comfy_stub, workflow):
    stub = comfy_stub(errors={"/prompt": httpx.ReadTimeout})
    result = _run(stub, "submit", workflow, "cid-1")
    assert result.accepted is False
    assert result.error_kind == ErrorKind.UNREACHABLE
    assert "ReadTimeout" in result.detail


def test_submit_accepts_unparseable_success_body(comfy_stub, workflow):
    stub = comfy_stub(prompt_body="queued")
    result = _run(stub, "submit", workflow, "cid-1")
    assert result.accepted is True
    assert result.job_id is None
    assert "queued" in result.detail


def test_new_client_id_is_unique():
    ids = {new_client_id("g1") for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("webcam_app_") and "_g1_" in i for i in ids)
