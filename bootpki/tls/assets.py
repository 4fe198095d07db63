#!/usr/bin/env python3
#
# This module contains the named records in which generated keys and
# certificates are handed to storage and templating collaborators. The values
# of AssetName are the paths those collaborators place the material at, so
# they must remain stable.

import bootpki.errors
import dataclasses
import enum
import typing


class AssetName(enum.Enum):
    "Enumerates every asset this project can generate"
    CA_KEY = "tls/ca.key"
    CA_CERT = "tls/ca.crt"
    APISERVER_KEY = "tls/apiserver.key"
    APISERVER_CERT = "tls/apiserver.crt"
    SERVICE_ACCOUNT_PRIVATE_KEY = "tls/service-account.key"
    SERVICE_ACCOUNT_PUBLIC_KEY = "tls/service-account.pub"
    KUBELET_KEY = "tls/kubelet.key"
    KUBELET_CERT = "tls/kubelet.crt"
    ETCD_CA_CERT = "tls/etcd-ca.crt"
    ETCD_CLIENT_KEY = "tls/etcd-client.key"
    ETCD_CLIENT_CERT = "tls/etcd-client.crt"
    ETCD_SERVER_KEY = "tls/etcd/server.key"
    ETCD_SERVER_CERT = "tls/etcd/server.crt"
    ETCD_PEER_KEY = "tls/etcd/peer.key"
    ETCD_PEER_CERT = "tls/etcd/peer.crt"


@dataclasses.dataclass(frozen=True)
class Asset:
    name: AssetName
    # PEM-encoded key or certificate
    data: bytes


AssetSet = typing.Tuple[Asset, ...]


def find_asset(assets: AssetSet, name: AssetName) -> Asset:
    "Returns the asset with the given name, or raises KeyError"
    for asset in assets:
        if asset.name == name:
            return asset
    raise KeyError(name)


def check_unique_names(assets: AssetSet) -> None:
    names = set()
    for asset in assets:
        if asset.name in names:
            raise bootpki.errors.InputValidationError(
                f"found duplicate asset {asset.name.value}"
            )
        names.add(asset.name)
