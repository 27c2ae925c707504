"""Store backend that shells out to kubectl."""

from __future__ import annotations

import json
import subprocess

from obsfleet.store.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from obsfleet.store.kinds import kind_info
from obsfleet.store.base import name_of, namespace_of


def _classify_error(stderr: str, rc: int, *, kind: str, name: str, namespace: str | None) -> StoreError:
    text = (stderr or "").strip()
    lower = text.lower()
    detail = text or f"kubectl exited with rc={rc}"
    if "(notfound)" in lower or "not found" in lower:
        return NotFoundError(detail, kind=kind, name=name, namespace=namespace)
    if "(alreadyexists)" in lower or "already exists" in lower:
        return AlreadyExistsError(detail, kind=kind, name=name, namespace=namespace)
    if "(conflict)" in lower or "the object has been modified" in lower:
        return ConflictError(detail, kind=kind, name=name, namespace=namespace)
    return StoreError(detail, kind=kind, name=name, namespace=namespace)


class KubectlStore:
    def __init__(self, kubectl: str = "kubectl", context: str | None = None, timeout_s: float = 30.0) -> None:
        self.kubectl = kubectl
        self.context = context
        self.timeout_s = timeout_s

    def _argv(self, args: list[str]) -> list[str]:
        argv = [self.kubectl]
        if self.context:
            argv += ["--context", self.context]
        return argv + args

    def _run(
        self,
        args: list[str],
        *,
        kind: str,
        name: str = "",
        namespace: str | None = None,
        stdin: str | None = None,
    ) -> str:
        try:
            cp = subprocess.run(
                self._argv(args),
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except FileNotFoundError as e:
            raise StoreError(f"kubectl not found: {e}", kind=kind, name=name, namespace=namespace) from e
        except subprocess.TimeoutExpired as e:
            raise StoreError(f"kubectl timed out after {self.timeout_s}s", kind=kind, name=name, namespace=namespace) from e
        if cp.returncode != 0:
            raise _classify_error(cp.stderr, int(cp.returncode), kind=kind, name=name, namespace=namespace)
        return cp.stdout or ""

    def _run_json(self, args: list[str], **kwargs: object) -> dict:
        stdout = self._run(args, **kwargs)  # type: ignore[arg-type]
        try:
            payload = json.loads(stdout or "{}")
        except json.JSONDecodeError as e:
            raise StoreError(f"kubectl returned invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise StoreError("kubectl returned a non-object payload")
        return payload

    def _scope(self, kind: str, namespace: str | None, *, all_namespaces: bool = False) -> list[str]:
        if not kind_info(kind).namespaced:
            return []
        if namespace:
            return ["-n", namespace]
        return ["-A"] if all_namespaces else []

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict:
        resource = kind_info(kind).resource
        return self._run_json(
            ["get", resource, name, *self._scope(kind, namespace), "-o", "json"],
            kind=kind,
            name=name,
            namespace=namespace,
        )

    def list(self, kind: str, namespace: str | None = None, labels: dict[str, str] | None = None) -> list[dict]:
        resource = kind_info(kind).resource
        args = ["get", resource, *self._scope(kind, namespace, all_namespaces=True)]
        if labels:
            args += ["-l", ",".join(f"{key}={value}" for key, value in sorted(labels.items()))]
        args += ["-o", "json"]
        payload = self._run_json(args, kind=kind, namespace=namespace)
        items = []
        for item in payload.get("items", []):
            if not isinstance(item, dict):
                continue
            item.setdefault("kind", kind)
            items.append(item)
        return items

    def _apply(self, verb: list[str], obj: dict) -> dict:
        kind = str(obj.get("kind") or "")
        return self._run_json(
            [*verb, "-f", "-", "-o", "json"],
            kind=kind,
            name=name_of(obj),
            namespace=namespace_of(obj) or None,
            stdin=json.dumps(obj, sort_keys=True),
        )

    def create(self, obj: dict) -> dict:
        return self._apply(["create"], obj)

    def update(self, obj: dict) -> dict:
        return self._apply(["replace"], obj)

    def update_status(self, obj: dict) -> dict:
        return self._apply(["replace", "--subresource=status"], obj)

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        resource = kind_info(kind).resource
        self._run(
            ["delete", resource, name, *self._scope(kind, namespace), "--wait=false"],
            kind=kind,
            name=name,
            namespace=namespace,
        )
