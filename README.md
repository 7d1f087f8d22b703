# multusconf

A library for the configuration side of a multi-network CNI meta-plugin.
It reads the meta-plugin's JSON configuration, loads each delegate network
configuration (a single plugin config or a plugin list), applies the
per-pod network selection requests, and builds the runtime configuration
that is handed to each delegate.

## Installation

```
pip install .
```

Install with `pip install .[test]` to also get the test requirements.

## Modules

- `multusconf.types`: the dataclasses (`NetConf`, `DelegateNetConf`,
  `NetworkSelectionElement`, `RuntimeConfig`, `PortMapEntry`,
  `BandwidthEntry`, `LogOptions`, `PluginConf`, `PluginConfList`,
  `K8sArgs`, `ResourceInfo`) and the `ConfigError` exception.
- `multusconf.delegate`: loading delegate configurations and injecting
  device IDs and CNI args into them.
- `multusconf.runtime`: building the per-delegate runtime configuration.
- `multusconf.netconf`: loading the top-level configuration and checking
  for the readiness indicator file.

## Loading the main configuration

```python
from multusconf.netconf import load_net_conf

conf = load_net_conf(b'''{
    "name": "node-cni-network",
    "type": "multus",
    "delegates": [{"type": "weave-net"}, {"type": "foobar"}],
    "globalNamespaces": " foo,bar ,default"
}''')

conf.delegates[0].master_plugin          # True: the first delegate is the master
conf.non_isolated_namespaces             # ['foo', 'bar', 'default']
```

Bad JSON, fields of the wrong type, no delegates without a
`clusterNetwork`, or a delegate with neither a `type` nor a non-empty
`plugins` list raise `multusconf.types.ConfigError`. When a
`clusterNetwork` is given, `delegates` is left empty for the caller to
fill, for example with `NetConf.add_delegates`.

`get_default_net_conf()` returns the defaults applied before the JSON is
read: binary directory `/opt/cni/bin`, configuration directory
`/etc/cni/multus/net.d`, cache directory `/var/lib/cni/multus`, namespace
`kube-system`, non-isolated namespaces `["default"]` and system namespaces
`["kube-system"]`.

## Delegates and network selection

```python
from multusconf.delegate import load_delegate_net_conf, check_gateway_config
from multusconf.types import NetworkSelectionElement

element = NetworkSelectionElement.from_dict(
    {"name": "net1", "namespace": "test", "default-route": ["10.1.1.1"]}
)
delegate = load_delegate_net_conf(
    b'{"name": "net1", "type": "bridge"}', element, "0000:00:00.0", "resource"
)
delegate.name        # 'test/net1'
delegate.raw         # JSON bytes with "deviceID" and "pciBusID" injected

check_gateway_config([delegate])
delegate.is_filter_v4_gateway   # False: this delegate supplies the IPv4 default route
delegate.is_filter_v6_gateway   # True
```

`check_gateway_config` raises `ConfigError` when the delegates together
request more than one IPv4 or more than one IPv6 default route.

`delegate_add_device_id` and `add_device_id_in_conf_list` set `deviceID`
and `pciBusID` on a config or on every plugin of a list;
`add_cni_args_in_config` and `add_cni_args_in_conf_list` merge extra
values into `args.cni`. `check_system_namespaces` tells whether a
namespace is listed.

## Runtime configuration

```python
from multusconf.runtime import CmdArgs, create_cni_runtime_conf
from multusconf.types import K8sArgs

args = CmdArgs(container_id="123456789", netns="/var/run/netns/test", if_name="eth0")
k8s = K8sArgs(k8s_pod_name="dummy", k8s_pod_namespace="namespacedummy")
rt, device_info_file = create_cni_runtime_conf(args, k8s, "eth0", None, delegate)
rt.args              # [('IgnoreUnknown', 'true'), ('K8S_POD_NAMESPACE', 'namespacedummy'), ...]
rt.capability_args   # the delegate's port mappings, bandwidth, ips, mac, deviceID, ...
device_info_file     # '/var/run/k8s.cni.cncf.io/devinfo/cni/test-net1-123456789_eth0'
```

`merge_cni_runtime_config` applies a delegate's requests to a copy of the
runtime configuration; the master plugin gets the configuration unchanged.
Values from the `CNI_ARGS` environment variable (`KEY=VALUE;...`) fill in
empty arguments or are appended.

## Results and readiness

`get_gateway_from_result(result)` takes a result as a dict and returns
the gateways of its routes whose destination has a prefix length of 0.

`readiness_indicator_exists_now(path)` checks for the file once;
`get_readiness_indicator_file(path)` polls once a second for up to
45 seconds and raises `TimeoutError` if it never appears.

## What this package does not do

It does not run delegate plugins, talk to the Kubernetes API, or provide
a command-line plugin. A `prevResult` is kept as the plain dict it was
read as, not converted into a typed result. The `logFile`, `logLevel`,
`logToStderr` and `logOptions` settings are read into `NetConf` but not
applied; the modules log through the standard `logging` module.