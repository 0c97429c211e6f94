import copy
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)


class NodeRole(str, Enum):
    IMAGE_INPUT = "ImageInput"
    MASK_INPUT = "MaskInput"
    RESULT_SAVE = "ResultSave"
    MESH_SAVE = "MeshSave"


# ComfyUI class_type -> role the patcher knows how to rewrite
NODE_ROLES: Dict[str, NodeRole] = {
    "LoadImage": NodeRole.IMAGE_INPUT,
    "ImageInput": NodeRole.IMAGE_INPUT,
    "LoadImageMask": NodeRole.MASK_INPUT,
    "SaveImage": NodeRole.RESULT_SAVE,
    "SaveGLB": NodeRole.MESH_SAVE,
}

IMAGE_KEY = "image"
PREFIX_KEY = "filename_prefix"


def load_template(path: Path) -> Dict[str, Any]:
    """Read the workflow template once at startup.

    Anything unusable loads as the empty template, which disables dispatch
    without failing capture.
    """
    if not path.exists():
        log.warning("No workflow file found at %s; automatic prompting disabled", path)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.error("Error loading workflow template %s: %s", path, exc)
        return {}

    if isinstance(data, dict) and isinstance(data.get("prompt"), dict):
        data = data["prompt"]
    if not isinstance(data, dict):
        log.error("Workflow template %s is not a JSON object", path)
        return {}

    log.info("Workflow template loaded from %s (%d nodes)", path, len(data))
    return data


def node_role(node: Any) -> Optional[NodeRole]:
    if not isinstance(node, dict):
        return None
    return NODE_ROLES.get(node.get("class_type"))


def _set_input(node: Dict[str, Any], key: str, value: str) -> bool:
    inputs = node.get("inputs")
    if not isinstance(inputs, dict) or key not in inputs:
        return False
    inputs[key] = value
    return True


def patch_template(
    template: Dict[str, Any],
    asset_name: str,
    *,
    output_prefix: str,
    mesh_subfolder: Optional[str] = None,
) -> Dict[str, Any]:
    if not asset_name:
        raise ValueError("asset_name must be non-empty")

    mesh_prefix = f"{mesh_subfolder}/{output_prefix}" if mesh_subfolder else output_prefix
    job = copy.deepcopy(template)

    for node_id, node in job.items():
        role = node_role(node)
        if role in (NodeRole.IMAGE_INPUT, NodeRole.MASK_INPUT):
            if _set_input(node, IMAGE_KEY, asset_name):
                log.debug("Updated %s node %s with image %s", role.value, node_id, asset_name)
        elif role is NodeRole.RESULT_SAVE:
            _set_input(node, PREFIX_KEY, output_prefix)
        elif role is NodeRole.MESH_SAVE:
            if _set_input(node, PREFIX_KEY, mesh_prefix):
                log.debug("Updated SaveGLB node %s with prefix %s", node_id, mesh_prefix)

    return job
