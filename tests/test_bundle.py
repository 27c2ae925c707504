import base64

import pytest
import yaml

from obsfleet.bundle import (
    AddonSpec,
    HubInputs,
    addon_group,
    build_bundle,
    build_work_manifests,
    merge_allowlist,
)
from obsfleet.config import OWNER_LABELS, work_name
from obsfleet.errors import InvalidInputError
from obsfleet.placement import MemberTarget

TARGET = MemberTarget(name="cluster-1", namespace="cluster-1")

EXPECTED_KINDS = [
    "Namespace",
    "ServiceAccount",
    "ClusterRole",
    "ClusterRoleBinding",
    "Deployment",
    "ObservabilityAddon",
    "Secret",
    "Secret",
    "ConfigMap",
]


def test_bundle_without_pull_secret_has_nine_manifests(settings, hub) -> None:
    manifests = build_work_manifests(TARGET, AddonSpec(), hub, settings)
    assert [m["kind"] for m in manifests] == EXPECTED_KINDS
    deployment = manifests[4]
    assert "imagePullSecrets" not in deployment["spec"]["template"]["spec"]


def test_bundle_with_pull_secret_has_ten_manifests(settings, hub, pull_secret) -> None:
    hub_with_secret = HubInputs(hub_ca=hub.hub_ca, hub_endpoint=hub.hub_endpoint, pull_secret=pull_secret)
    manifests = build_work_manifests(TARGET, AddonSpec(), hub_with_secret, settings)
    assert len(manifests) == 10
    secret = manifests[-1]
    assert secret["kind"] == "Secret"
    assert secret["metadata"] == {"name": "multiclusterhub-operator-pull-secret", "namespace": "obs-spoke"}
    assert secret["data"] == {".dockerconfigjson": "e30="}
    deployment = manifests[4]
    assert deployment["spec"]["template"]["spec"]["imagePullSecrets"] == [
        {"name": "multiclusterhub-operator-pull-secret"}
    ]


def test_bundle_embeds_hub_ca_and_hub_info(settings, hub) -> None:
    manifests = build_work_manifests(TARGET, AddonSpec(enable_metrics=False, interval=60), hub, settings)
    hub_info, certs = manifests[6], manifests[7]
    assert base64.b64decode(certs["data"]["ca.crt"]) == hub.hub_ca
    info = yaml.safe_load(base64.b64decode(hub_info["data"]["hub-info.yaml"]))
    assert info == {"cluster-name": "cluster-1", "endpoint": hub.hub_endpoint}
    assert manifests[5]["spec"] == {"enableMetrics": False, "interval": 60}


def test_build_bundle_objects(settings, hub) -> None:
    bundle = build_bundle(TARGET, AddonSpec(), hub, settings)

    assert bundle.work["metadata"]["name"] == work_name("cluster-1") == "cluster-1-observability"
    assert bundle.work["metadata"]["namespace"] == "cluster-1"
    assert bundle.work["metadata"]["labels"] == OWNER_LABELS
    assert bundle.manifests is bundle.work["spec"]["workload"]["manifests"]

    assert bundle.addon["metadata"]["name"] == "observability-addon"
    assert bundle.addon["spec"] == {"enableMetrics": True, "interval": 30}

    assert bundle.activation["metadata"]["name"] == "observability-controller"
    assert bundle.activation["spec"] == {"installNamespace": "obs-spoke"}

    assert len(bundle.role_bindings) == 2
    for binding in bundle.role_bindings:
        assert binding["metadata"]["namespace"] == "cluster-1"
        assert binding["subjects"][0]["name"] == addon_group("cluster-1")
    assert addon_group("cluster-1") == "system:open-cluster-management:cluster:cluster-1:addon:observability-controller"


def test_addon_spec_from_mco() -> None:
    assert AddonSpec.from_mco(None) == AddonSpec()
    mco = {"spec": {"observabilityAddonSpec": {"enableMetrics": False, "interval": 120}}}
    assert AddonSpec.from_mco(mco) == AddonSpec(enable_metrics=False, interval=120)
    bad = {"spec": {"observabilityAddonSpec": {"enableMetrics": "no", "interval": -5}}}
    assert AddonSpec.from_mco(bad) == AddonSpec()


def test_merge_allowlist_unions_names_and_custom_renames_win() -> None:
    default = yaml.safe_dump({"names": ["up", "cpu"], "renames": {"a": "b", "c": "d"}})
    custom = yaml.safe_dump({"names": ["cpu", "memory"], "renames": {"a": "z"}})
    merged = yaml.safe_load(merge_allowlist(default, custom))
    assert merged == {"names": ["up", "cpu", "memory"], "renames": {"a": "z", "c": "d"}}


def test_merge_allowlist_without_inputs() -> None:
    assert yaml.safe_load(merge_allowlist(None)) == {"names": [], "renames": {}}


def test_merge_allowlist_rejects_malformed_custom_document() -> None:
    with pytest.raises(InvalidInputError) as excinfo:
        merge_allowlist(yaml.safe_dump({"names": ["up"]}), "names: [unclosed")
    assert excinfo.value.kind == "ConfigMap"
    assert excinfo.value.name == "observability-metrics-custom-allowlist"
