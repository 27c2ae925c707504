import json
import os
import subprocess
from pathlib import Path

import pytest
from conftest import make_mco, make_placement

from obsfleet import cli
from obsfleet.config import OWNER_LABELS
from obsfleet.store.base import new_object


def _run(obsfleet: Path, args: list[str], env: dict | None = None) -> subprocess.CompletedProcess[str]:
    process_env = os.environ.copy()
    if env:
        process_env.update(env)
    return subprocess.run([str(obsfleet), *args], text=True, capture_output=True, env=process_env)


def _write_kubectl(tmp_path: Path, body: str) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    kubectl = bin_dir / "kubectl"
    kubectl.write_text("#!/usr/bin/env bash\nset -Eeuo pipefail\n" + body, encoding="utf-8")
    kubectl.chmod(0o755)
    return kubectl


def _read(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def memory_store(store, monkeypatch):
    monkeypatch.setattr(cli, "_build_store", lambda settings, context=None: store)
    return store


def test_reconcile_delete_all_with_path_stub(tmp_path: Path, obsfleet_path: Path) -> None:
    kubectl = _write_kubectl(
        tmp_path,
        """
if [[ "$1" == "get" && " $* " == *" -A "* ]]; then
  echo '{"items":[]}'
  exit 0
fi
if [[ "$1" == "get" || "$1" == "delete" ]]; then
  echo 'Error from server (NotFound): resource not found' >&2
  exit 1
fi
echo "unexpected args: $*" >&2
exit 1
""",
    )
    out_dir = tmp_path / "out"
    cp = _run(
        obsfleet_path,
        ["reconcile", "--out", str(out_dir)],
        env={"KUBECTL": str(kubectl), "OBSFLEET_NAMESPACE": "obs-hub", "OBSFLEET_LOG_FORMAT": "json"},
    )
    assert cp.returncode == 0, cp.stderr
    assert "outcome=deleted ok=true" in cp.stdout

    report = _read(out_dir / "reconcile_latest.json")
    assert report["schema"] == "reconcile_pass.v0"
    assert report["outcome"] == "deleted"
    assert report["delete_all"] is True
    assert report["shared_deleted"] is True


def test_reconcile_store_failure_exits_nonzero(tmp_path: Path, obsfleet_path: Path) -> None:
    kubectl = _write_kubectl(
        tmp_path,
        """
echo 'Error from server (Forbidden): access denied' >&2
exit 1
""",
    )
    out_dir = tmp_path / "out"
    cp = _run(obsfleet_path, ["reconcile", "--out", str(out_dir)], env={"KUBECTL": str(kubectl)})
    assert cp.returncode == 1

    report = _read(out_dir / "reconcile_latest.json")
    assert report["ok"] is False
    assert report["error"]["type"] == "StoreError"


def test_reconcile_watch_runs_bounded_iterations(memory_store, tmp_path: Path) -> None:
    memory_store.seed(make_mco())
    memory_store.seed(make_placement(["c1"]))
    out_dir = tmp_path / "out"

    rc = cli.main(
        ["reconcile", "--namespace", "obs-hub", "--out", str(out_dir), "--watch", "--interval", "0", "--iterations", "2"]
    )

    assert rc == 0
    watch = _read(out_dir / "watch_latest.json")
    assert watch["schema"] == "reconcile_watch.v0"
    assert watch["iterations_done"] == 2
    assert watch["failed_passes"] == 0
    assert watch["events_accepted"] >= 1
    assert watch["pending_keys"] == 0
    last = _read(out_dir / "reconcile_latest.json")
    assert last["ok"] is True
    assert last["convergence"]["created"] == []


def test_reconcile_convergence_failure_reports_members(memory_store, tmp_path: Path) -> None:
    memory_store.seed(make_mco())
    memory_store.seed(make_placement(["c1", "c2"]))
    memory_store.inject_failure("create", "ManifestWork", namespace="c1")
    out_dir = tmp_path / "out"

    rc = cli.main(["reconcile", "--namespace", "obs-hub", "--out", str(out_dir)])

    assert rc == 1
    report = _read(out_dir / "reconcile_latest.json")
    assert report["error"]["type"] == "ConvergenceError"
    assert report["error"]["failed_creates"] == ["c1"]
    assert "ManifestWork c2/c2-observability" in report["error"]["convergence"]["created"]


def _bad_allowlist() -> dict:
    return new_object(
        "ConfigMap",
        "observability-metrics-custom-allowlist",
        "obs-hub",
        data={"metrics_list.yaml": "names: [unclosed"},
    )


def test_reconcile_malformed_allowlist_reports_invalid_input(memory_store, tmp_path: Path) -> None:
    memory_store.seed(make_mco())
    memory_store.seed(make_placement(["c1"]))
    memory_store.seed(_bad_allowlist())
    out_dir = tmp_path / "out"

    rc = cli.main(["reconcile", "--namespace", "obs-hub", "--out", str(out_dir)])

    assert rc == 1
    report = _read(out_dir / "reconcile_latest.json")
    assert report["ok"] is False
    assert report["error"]["type"] == "InvalidInputError"
    assert "observability-metrics-custom-allowlist" in report["error"]["message"]


def test_reconcile_watch_keeps_running_after_failed_passes(memory_store, tmp_path: Path) -> None:
    memory_store.seed(make_mco())
    memory_store.seed(make_placement(["c1"]))
    memory_store.seed(_bad_allowlist())
    out_dir = tmp_path / "out"

    rc = cli.main(
        ["reconcile", "--namespace", "obs-hub", "--out", str(out_dir), "--watch", "--interval", "0", "--iterations", "2"]
    )

    assert rc == 1
    watch = _read(out_dir / "watch_latest.json")
    assert watch["iterations_done"] == 2
    assert watch["failed_passes"] == 2
    assert watch["pending_keys"] == 1


def test_certs_bootstrap_then_rotate(memory_store, tmp_path: Path, capsys) -> None:
    out_dir = tmp_path / "out"

    assert cli.main(["certs", "bootstrap", "--namespace", "obs-hub", "--out", str(out_dir)]) == 0
    report = _read(out_dir / "certs_latest.json")
    assert report["action"] == "bootstrap"
    assert len(report["secrets"]) == 5

    assert cli.main(["certs", "rotate", "--namespace", "obs-hub", "--out", str(out_dir)]) == 0
    report = _read(out_dir / "certs_latest.json")
    assert report["action"] == "rotate"
    assert report["secrets"][:2] == ["observability-server-ca-certs", "observability-client-ca-certs"]
    assert "rotated=5" in capsys.readouterr().out


def test_status_prints_projected_conditions(memory_store, tmp_path: Path, capsys) -> None:
    addon = new_object("ObservabilityAddon", "observability-addon", "c1", labels=OWNER_LABELS)
    addon["status"] = {"conditions": [{"type": "Deployed", "status": "True", "reason": "Deployed", "message": "ok"}]}
    memory_store.seed(addon)
    out_dir = tmp_path / "out"

    assert cli.main(["status", "--out", str(out_dir)]) == 0

    assert "c1 Progressing=True" in capsys.readouterr().out
    report = _read(out_dir / "status_latest.json")
    assert report["members"][0]["namespace"] == "c1"
    assert report["members"][0]["conditions"][0]["type"] == "Progressing"


def test_version_flag(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.startswith("obsfleet ")
