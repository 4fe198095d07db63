#!/usr/bin/env python3
#
# This package contains modules related to loading, validating and accessing
# project configuration.

import bootpki.errors
import dacite
import dataclasses
import ipaddress
import typing
import yaml
import yarl

# Offsets of well-known Kubernetes services within the service CIDR
API_SERVICE_IP_OFFSET = 1
ETCD_SERVICE_IP_OFFSET = 15
BOOT_ETCD_SERVICE_IP_OFFSET = 20


@dataclasses.dataclass(frozen=True)
class ClusterConfiguration:
    "Struct that contains user-configurable settings"
    # URLs of the Kubernetes API, e.g. https://k8s.example.com:443. Their
    # hosts become SANs of the apiserver certificate.
    api_servers: typing.List[str]
    # URLs of the etcd servers. Their hosts become SANs of the etcd client and
    # peer certificates when etcd is not self-hosted.
    etcd_servers: typing.List[str] = dataclasses.field(
        default_factory=lambda: ["http://127.0.0.1:2379"]
    )
    # CIDR from which Kubernetes service IPs are allocated
    service_cidr: str = "10.3.0.0/24"
    # Whether etcd runs as pods managed by the cluster itself
    self_hosted_etcd: bool = False

    @property
    def api_server_urls(self) -> typing.List[yarl.URL]:
        return [yarl.URL(url) for url in self.api_servers]

    @property
    def etcd_server_urls(self) -> typing.List[yarl.URL]:
        return [yarl.URL(url) for url in self.etcd_servers]

    @property
    def service_network(
        self,
    ) -> typing.Union[ipaddress.IPv4Network, ipaddress.IPv6Network]:
        return ipaddress.ip_network(self.service_cidr, strict=False)

    def _service_ip(
        self, offset: int
    ) -> typing.Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
        return self.service_network[offset]

    @property
    def api_service_ip(
        self,
    ) -> typing.Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
        "IP of the kubernetes service in the default namespace"
        return self._service_ip(API_SERVICE_IP_OFFSET)

    @property
    def etcd_service_ip(
        self,
    ) -> typing.Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
        "IP of the self-hosted etcd client service"
        return self._service_ip(ETCD_SERVICE_IP_OFFSET)

    @property
    def boot_etcd_service_ip(
        self,
    ) -> typing.Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
        "IP of the temporary etcd service used while the cluster bootstraps"
        return self._service_ip(BOOT_ETCD_SERVICE_IP_OFFSET)


def load_cluster_configuration(f: typing.IO) -> ClusterConfiguration:
    """
    Load the given configuration YAML or JSON file. The configuration will be
    validated during loading. If the configuration is valid, return a
    configuration struct. Otherwise, raises an InputValidationError.
    """
    data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise bootpki.errors.InputValidationError(
            "configuration must be a mapping"
        )
    try:
        configuration = dacite.from_dict(data_class=ClusterConfiguration, data=data)
    except dacite.DaciteError as e:
        raise bootpki.errors.InputValidationError(
            f"invalid configuration: {e}"
        ) from e
    validate_configuration(configuration)
    return configuration


def validate_configuration(configuration: ClusterConfiguration) -> None:
    """
    Check if the given configuration struct has any obvious mistakes. If the
    configuration is valid, runs to completion. Otherwise, raises an
    InputValidationError.
    """
    validators = [
        validate_api_servers,
        validate_etcd_servers,
        validate_service_cidr,
    ]

    for f in validators:
        f(configuration)


def _validate_urls(name: str, urls: typing.List[str]) -> None:
    if not urls:
        raise bootpki.errors.InputValidationError(f"{name} must be defined")
    for url in urls:
        if not yarl.URL(url).host:
            raise bootpki.errors.InputValidationError(
                f"{name} entry {url!r} must be a URL with a host"
            )


def validate_api_servers(configuration: ClusterConfiguration) -> None:
    _validate_urls("api_servers", configuration.api_servers)


def validate_etcd_servers(configuration: ClusterConfiguration) -> None:
    _validate_urls("etcd_servers", configuration.etcd_servers)


def validate_service_cidr(configuration: ClusterConfiguration) -> None:
    try:
        network = configuration.service_network
    except ValueError as e:
        raise bootpki.errors.InputValidationError(
            f"service_cidr {configuration.service_cidr!r} is not a valid CIDR"
        ) from e
    # The last well-known service IP must fit, excluding the broadcast address
    if network.num_addresses <= BOOT_ETCD_SERVICE_IP_OFFSET + 1:
        raise bootpki.errors.InputValidationError(
            f"service_cidr {configuration.service_cidr} is too small"
        )
