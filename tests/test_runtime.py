import pytest

from multusconf.delegate import load_delegate_net_conf
from multusconf.runtime import (
    CmdArgs,
    create_cni_runtime_conf,
    delegate_runtime_config,
    get_cni_device_info_path,
    merge_cni_runtime_config,
    new_cni_runtime_conf,
)
from multusconf.types import (
    BandwidthEntry,
    K8sArgs,
    NetworkSelectionElement,
    PortMapEntry,
    RuntimeConfig,
)

MAC = "02:00:00:00:00:01"
GUID = "00:00:00:00:00:00:00:01"

STDIN = b"""{
    "name": "node-cni-network",
    "type": "multus",
    "delegates": [{"name": "weave1", "cniVersion": "0.2.0", "type": "weave-net"}]
}"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("CNI_ARGS", raising=False)


@pytest.fixture
def cmd_args():
    return CmdArgs(container_id="123456789", netns="/var/run/netns/test", if_name="eth0", stdin_data=STDIN)


def _selection():
    bandwidth = BandwidthEntry(ingress_rate=100, ingress_burst=200, egress_rate=100, egress_burst=200)
    port_map = PortMapEntry(host_port=8080, container_port=80, protocol="tcp", host_ip="10.0.0.1")
    element = NetworkSelectionElement(
        name="testname",
        interface_request="testIF1",
        mac_request=MAC,
        infiniband_guid_request=GUID,
        ip_request=["10.0.0.1/24"],
        bandwidth_request=bandwidth,
        port_mappings_request=[port_map],
    )
    return element, bandwidth, port_map


def test_creates_valid_runtime_config(cmd_args):
    k8s_args = K8sArgs(
        k8s_pod_name="dummy", k8s_pod_namespace="namespacedummy", k8s_pod_infra_container_id="123456789"
    )
    rc = RuntimeConfig(
        port_maps=[
            PortMapEntry(host_port=0, container_port=1, protocol="sampleProtocol", host_ip="sampleHostIP"),
            PortMapEntry(
                host_port=1, container_port=2, protocol="anotherSampleProtocol", host_ip="anotherSampleHostIP"
            ),
        ]
    )
    rt, _ = create_cni_runtime_conf(cmd_args, k8s_args, "", rc, None)
    assert rt.container_id == "123456789"
    assert rt.net_ns == cmd_args.netns
    assert rt.if_name == ""
    assert rt.capability_args["portMappings"] == rc.port_maps


def test_k8s_args_from_environment(cmd_args, monkeypatch):
    monkeypatch.setenv(
        "CNI_ARGS",
        "K8S_POD_NAME=dummy;K8S_POD_NAMESPACE=namespacedummy;K8S_POD_INFRA_CONTAINER_ID=123456789;"
        "K8S_POD_UID=aaaaa;BLAHBLAH=foo=bar",
    )
    rt, _ = create_cni_runtime_conf(cmd_args, K8sArgs(), "", RuntimeConfig(), None)
    assert rt.container_id == "123456789"
    assert rt.net_ns == cmd_args.netns
    assert rt.if_name == ""
    assert rt.args == [
        ("IgnoreUnknown", "true"),
        ("K8S_POD_NAMESPACE", "namespacedummy"),
        ("K8S_POD_NAME", "dummy"),
        ("K8S_POD_INFRA_CONTAINER_ID", "123456789"),
        ("K8S_POD_UID", "aaaaa"),
        ("BLAHBLAH", "foo=bar"),
    ]


def test_environment_args_do_not_replace_set_values(cmd_args, monkeypatch):
    monkeypatch.setenv("CNI_ARGS", "K8S_POD_NAME=other;novalue;IgnoreUnknown=1")
    k8s_args = K8sArgs(k8s_pod_name="dummy")
    rt, _ = create_cni_runtime_conf(cmd_args, k8s_args, "eth0", None, None)
    assert rt.args[2] == ("K8S_POD_NAME", "dummy")
    assert rt.args[5:] == [("K8S_POD_NAME", "other"), ("IgnoreUnknown", "1")]


def test_base_args_order_without_environment(cmd_args):
    k8s_args = K8sArgs(k8s_pod_name="pod", k8s_pod_namespace="ns", k8s_pod_uid="uid")
    rt, device_info = create_cni_runtime_conf(cmd_args, k8s_args, "eth0", None, None)
    assert rt.args == [
        ("IgnoreUnknown", "true"),
        ("K8S_POD_NAMESPACE", "ns"),
        ("K8S_POD_NAME", "pod"),
        ("K8S_POD_INFRA_CONTAINER_ID", ""),
        ("K8S_POD_UID", "uid"),
    ]
    assert rt.capability_args == {}
    assert device_info == ""


def test_merge_with_master_plugin():
    conf = b"""{
        "name": "node-cni-network",
        "type": "multus",
        "kubeconfig": "/etc/kubernetes/node-kubeconfig.yaml",
        "delegates": [{"name": "weave", "type": "weave-net"}],
        "runtimeConfig": {"portMappings": [{"hostPort": 8080, "containerPort": 80, "protocol": "tcp"}]}
    }"""
    element, _, _ = _selection()
    delegate = load_delegate_net_conf(conf, element, "", "")
    delegate.master_plugin = True
    original = RuntimeConfig()
    merged = merge_cni_runtime_config(original, delegate)
    assert merged.port_maps is None
    assert merged.bandwidth is None
    assert merged.infiniband_guid == ""
    assert original == RuntimeConfig()


def test_merge_with_delegate_plugin():
    conf = b'{"name": "weave1", "cniVersion": "0.2.0", "type": "weave-net"}'
    element, bandwidth, port_map = _selection()
    original = RuntimeConfig()
    delegate = load_delegate_net_conf(conf, element, "", "")
    merged = merge_cni_runtime_config(original, delegate)
    assert merged.port_maps == [port_map]
    assert merged.bandwidth == bandwidth
    assert merged.ips == ["10.0.0.1/24"]
    assert merged.mac == MAC
    assert merged.infiniband_guid == GUID
    assert original == RuntimeConfig()


def test_merge_without_runtime_config():
    delegate = load_delegate_net_conf(b'{"name": "n", "type": "t"}', NetworkSelectionElement(mac_request=MAC))
    merged = merge_cni_runtime_config(None, delegate)
    assert merged == RuntimeConfig(mac=MAC)


def test_device_info_path_replaces_slashes():
    assert get_cni_device_info_path("ns1/net1-cid_net1") == "/var/run/k8s.cni.cncf.io/devinfo/cni/ns1-net1-cid_net1"


def test_delegate_runtime_config_without_delegate_returns_rc():
    rc = RuntimeConfig(mac=MAC)
    assert delegate_runtime_config("cid", None, rc, "eth0") is rc


def test_device_id_produces_device_info_file():
    element = NetworkSelectionElement(name="net1", namespace="ns1")
    delegate = load_delegate_net_conf(b'{"name": "net1", "type": "sriov"}', element, "0000:00:00.0", "res")
    rt, device_info = new_cni_runtime_conf("cid", "sandbox", "pod", "ns", "uid", "/netns", "net1", None, delegate)
    assert device_info == "/var/run/k8s.cni.cncf.io/devinfo/cni/ns1-net1-cid_net1"
    assert rt.capability_args == {"deviceID": "0000:00:00.0", "CNIDeviceInfoFile": device_info}
    assert ("K8S_POD_INFRA_CONTAINER_ID", "sandbox") in rt.args


def test_capability_args_include_requests():
    conf = b'{"name": "weave1", "cniVersion": "0.2.0", "type": "weave-net"}'
    element, bandwidth, port_map = _selection()
    delegate = load_delegate_net_conf(conf, element, "", "")
    rt, device_info = new_cni_runtime_conf("cid", "", "pod", "ns", "", "/netns", "net1", RuntimeConfig(), delegate)
    assert rt.capability_args == {
        "portMappings": [port_map],
        "bandwidth": bandwidth,
        "ips": ["10.0.0.1/24"],
        "mac": MAC,
        "infinibandGUID": GUID,
    }
    assert device_info == ""