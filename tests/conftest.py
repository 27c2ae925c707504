# --- test import path bootstrap (src/ layout) ---
import sys as _sys
from pathlib import Path as _Path

_SRC = _Path(__file__).resolve().parents[1] / "src"
if _SRC.is_dir():
    _p = str(_SRC)
    if _p not in _sys.path:
        _sys.path.insert(0, _p)
# --- end bootstrap ---

import sys
import tempfile
from pathlib import Path

import pytest

from obsfleet.bundle import HubInputs
from obsfleet.config import Settings
from obsfleet.store.base import new_object
from obsfleet.store.memory import InMemoryStore

HUB_NAMESPACE = "obs-hub"
HUB_CA = b"-----BEGIN CERTIFICATE-----\nZmFrZS1jYQ==\n-----END CERTIFICATE-----\n"


@pytest.fixture
def obsfleet_path() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    local = repo_root / ".venv" / "bin" / "obsfleet"
    if local.exists():
        return local

    # Use a repo-local shim when local venv entrypoint is unavailable.
    shim_dir = Path(tempfile.mkdtemp(prefix="obsfleet-shim-"))
    shim = shim_dir / "obsfleet"
    shim.write_text(
        f"""#!/usr/bin/env bash
set -Eeuo pipefail
export PYTHONPATH=\"{repo_root}/src${{PYTHONPATH:+:${{PYTHONPATH}}}}\"
exec \"{sys.executable}\" -c 'import sys; from obsfleet.cli import main; raise SystemExit(main())' \"$@\"
""",
        encoding="utf-8",
    )
    shim.chmod(0o755)
    return shim


@pytest.fixture
def settings() -> Settings:
    return Settings(
        namespace=HUB_NAMESPACE,
        spoke_namespace="obs-spoke",
        endpoint_image="registry.example.test/endpoint-operator:1.0",
    )


@pytest.fixture
def hub() -> HubInputs:
    return HubInputs(hub_ca=HUB_CA, hub_endpoint="https://api.example.test/api/metrics/v1/default/api/v1/receive")


@pytest.fixture
def pull_secret() -> dict:
    return new_object(
        "Secret",
        "multiclusterhub-operator-pull-secret",
        HUB_NAMESPACE,
        type="kubernetes.io/dockerconfigjson",
        data={".dockerconfigjson": "e30="},
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


def make_placement(namespaces: list[str], name: str = "observability", namespace: str = HUB_NAMESPACE) -> dict:
    return new_object(
        "PlacementRule",
        name,
        namespace,
        status={"decisions": [{"clusterName": ns, "clusterNamespace": ns} for ns in namespaces]},
    )


def make_mco(name: str = "observability", **spec: object) -> dict:
    obj = new_object("MultiClusterObservability", name, spec=dict(spec))
    obj["metadata"]["uid"] = "mco-uid-1"
    return obj
