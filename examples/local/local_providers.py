"""File-backed providers for trying the engine without a cloud account.

Each resource is a JSON file under ``root/<type>/<id>.json``; deleting or
editing one by hand shows up in ``infra-provisioner drift``.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path

from infra_provisioner.engine.handlers import ChangeClass, ResourceProvider
from infra_provisioner.rotation.target import RotationTarget


class LocalFileProvider(ResourceProvider):
    def __init__(self, root: str = ".local-infra", replace_on: list[str] | None = None) -> None:
        self.root = Path(root)
        self.replace_on = set(replace_on or [])

    def _path(self, resource_type: str, node_id: str) -> Path:
        return self.root / resource_type / f"{node_id}.json"

    def _write(self, path: Path, outputs: dict) -> dict:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(outputs, indent=2, sort_keys=True) + "\n")
        return outputs

    def create(self, ctx, node):
        outputs = {
            "id": f"{node.type}-{uuid.uuid4().hex[:8]}",
            "region": ctx.region,
            **node.config,
        }
        return self._write(self._path(node.type, node.id), outputs)

    def update(self, ctx, node, prior):
        outputs = {**prior.outputs, **node.config}
        return self._write(self._path(node.type, node.id), outputs)

    def destroy(self, ctx, prior):
        self._path(prior.resource_type, prior.node_id).unlink(missing_ok=True)

    def classify_change(self, old, new):
        changed = {k for k in old.keys() | new.keys() if old.get(k) != new.get(k)}
        return ChangeClass.REPLACE if changed & self.replace_on else ChangeClass.IN_PLACE

    def read(self, ctx, prior):
        path = self._path(prior.resource_type, prior.node_id)
        if not path.exists():
            return None
        return json.loads(path.read_text())


class LocalCredentialTarget(RotationTarget):
    """Accepts any credential written to its file; keeps the last two valid."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def _accepted(self) -> list[str]:
        if not self.path.exists():
            return []
        return json.loads(self.path.read_text())

    def set_credential(self, value):
        accepted = [*self._accepted()[-1:], value]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(accepted))

    def verify_credential(self, value):
        return value in self._accepted()


def provider(**kwargs) -> LocalFileProvider:
    return LocalFileProvider(**kwargs)


def credential_target(path: str) -> LocalCredentialTarget:
    return LocalCredentialTarget(path)
