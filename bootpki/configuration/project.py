#!/usr/bin/env python3
#
# This module contains static configuration for the project. This provides an
# easy place to track values that aren't user-configurable but need to be
# synchronized across the project.

import dataclasses
import datetime
import enum
import typing


class KeyAlgorithm(enum.Enum):
    "Enumerates the supported private key types"
    RSA_2048 = enum.auto()
    ECDSA_P256 = enum.auto()


# CoreDNS names for the apiserver's Kubernetes service
KUBERNETES_SERVICE_DNS_NAMES: typing.Tuple[str, ...] = (
    "kubernetes",
    "kubernetes.default",
    "kubernetes.default.svc",
    "kubernetes.default.svc.cluster.local",
)

# In-cluster names of the self-hosted etcd members and their client service
SELF_HOSTED_ETCD_DNS_NAMES: typing.Tuple[str, ...] = (
    "*.kube-etcd.kube-system.svc.cluster.local",
    "kube-etcd-client.kube-system.svc.cluster.local",
)

# TLS organizations map to Kubernetes groups, and "system:masters" is a
# well-known group that gives a user admin power. Kubelets are placed in this
# group until they can be given finer-grained credentials, e.g. through TLS
# bootstrapping.
KUBELET_ORGANIZATION = "system:masters"


@dataclasses.dataclass(frozen=True)
class ProjectConfiguration:
    "Struct that contains global non-configurable settings"
    # Identity of the generated cluster certificate authority
    certificate_authority_common_name: str = "kube-ca"
    certificate_authority_organization: typing.Tuple[str, ...] = ("bootkube",)
    # Type and strength of every generated private key
    key_algorithm: KeyAlgorithm = KeyAlgorithm.RSA_2048
    # Lifetime of the certificate authority
    ca_validity: datetime.timedelta = datetime.timedelta(days=365 * 10)
    # Lifetime of every certificate signed by the certificate authority
    leaf_validity: datetime.timedelta = datetime.timedelta(days=365)
    kubernetes_service_dns_names: typing.Tuple[
        str, ...
    ] = KUBERNETES_SERVICE_DNS_NAMES
    self_hosted_etcd_dns_names: typing.Tuple[str, ...] = SELF_HOSTED_ETCD_DNS_NAMES
    kubelet_organization: str = KUBELET_ORGANIZATION


PROJECT_CONFIGURATION = ProjectConfiguration()
