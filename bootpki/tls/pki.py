#!/usr/bin/env python3
#
# This module builds the suites of named TLS assets needed to bootstrap a
# Kubernetes control plane and its etcd cluster, and concatenates them into
# the final asset list.
#
# Every builder returns a complete tuple of assets or raises; a failure part
# way through a suite never yields a partial result.

import bootpki.configuration
import bootpki.configuration.project
import bootpki.errors
import bootpki.logging
import bootpki.tls.altnames
import bootpki.tls.assets
import bootpki.tls.crypto
import contextlib
import cryptography.x509
import ipaddress
import typing

logger = bootpki.logging.get_logger(__name__)

AssetName = bootpki.tls.assets.AssetName

MASTER_SUITE = "master"
EXTERNAL_ETCD_SUITE = "external-etcd"
SELF_HOSTED_ETCD_SUITE = "self-hosted-etcd"

ETCD_ORGANIZATION = "etcd"


@contextlib.contextmanager
def _building(suite: str) -> typing.Iterator[None]:
    "Tags any error raised within the block with the suite being built"
    try:
        yield
    except bootpki.errors.PKIError as e:
        if e.suite is None:
            e.suite = suite
        raise


def _keypair_assets(
    key_name: bootpki.tls.assets.AssetName,
    certificate_name: bootpki.tls.assets.AssetName,
    keypair: bootpki.tls.crypto.Keypair,
) -> bootpki.tls.assets.AssetSet:
    return (
        bootpki.tls.assets.Asset(
            name=key_name,
            data=bootpki.tls.crypto.encode_private_key_pem(keypair.private_key),
        ),
        bootpki.tls.assets.Asset(
            name=certificate_name,
            data=bootpki.tls.crypto.encode_certificate_pem(keypair.certificate),
        ),
    )


def _certificate_asset(
    name: bootpki.tls.assets.AssetName, certificate: cryptography.x509.Certificate
) -> bootpki.tls.assets.Asset:
    return bootpki.tls.assets.Asset(
        name=name, data=bootpki.tls.crypto.encode_certificate_pem(certificate)
    )


def _issue(
    config: bootpki.tls.crypto.CertConfig,
    *,
    certificate_authority: bootpki.tls.crypto.Keypair,
    project_configuration: bootpki.configuration.project.ProjectConfiguration,
) -> bootpki.tls.crypto.Keypair:
    return bootpki.tls.crypto.generate_keypair(
        config,
        certificate_authority=certificate_authority,
        algorithm=project_configuration.key_algorithm,
        validity=project_configuration.leaf_validity,
    )


def create_certificate_authority(
    *,
    project_configuration: bootpki.configuration.project.ProjectConfiguration = bootpki.configuration.project.PROJECT_CONFIGURATION,
) -> bootpki.tls.crypto.Keypair:
    config = bootpki.tls.crypto.CertConfig(
        common_name=project_configuration.certificate_authority_common_name,
        organization=project_configuration.certificate_authority_organization,
    )
    signing_key = bootpki.tls.crypto.generate_private_key(
        project_configuration.key_algorithm, role=config.common_name
    )
    return bootpki.tls.crypto.Keypair(
        private_key=signing_key,
        certificate=bootpki.tls.crypto.generate_certificate_authority_certificate(
            config,
            signing_key=signing_key,
            validity=project_configuration.ca_validity,
        ),
    )


def create_master_assets(
    *,
    api_server_alt_names: bootpki.tls.crypto.AltNames,
    certificate_authority: typing.Optional[bootpki.tls.crypto.Keypair] = None,
    project_configuration: bootpki.configuration.project.ProjectConfiguration = bootpki.configuration.project.PROJECT_CONFIGURATION,
) -> bootpki.tls.assets.AssetSet:
    """
    Build the certificate authority, apiserver, service account and kubelet
    assets. A certificate authority is generated if none is given.

    The Kubernetes service DNS names are always appended to the apiserver
    SANs, even if api_server_alt_names already contains them.
    """
    with _building(MASTER_SUITE):
        if certificate_authority is None:
            certificate_authority = create_certificate_authority(
                project_configuration=project_configuration
            )

        apiserver_keypair = _issue(
            bootpki.tls.crypto.CertConfig(
                common_name="kube-apiserver",
                organization=("kube-master",),
                alt_names=api_server_alt_names.extend(
                    bootpki.tls.crypto.AltNames(
                        dns_names=project_configuration.kubernetes_service_dns_names
                    )
                ),
            ),
            certificate_authority=certificate_authority,
            project_configuration=project_configuration,
        )

        # The service account signing key is a bare keypair; the apiserver
        # and controller manager consume the key files directly.
        service_account_key = bootpki.tls.crypto.generate_private_key(
            project_configuration.key_algorithm, role="service-account"
        )

        kubelet_keypair = _issue(
            bootpki.tls.crypto.CertConfig(
                common_name="kubelet",
                organization=(project_configuration.kubelet_organization,),
            ),
            certificate_authority=certificate_authority,
            project_configuration=project_configuration,
        )

        return (
            *_keypair_assets(
                AssetName.CA_KEY, AssetName.CA_CERT, certificate_authority
            ),
            *_keypair_assets(
                AssetName.APISERVER_KEY, AssetName.APISERVER_CERT, apiserver_keypair
            ),
            bootpki.tls.assets.Asset(
                name=AssetName.SERVICE_ACCOUNT_PRIVATE_KEY,
                data=bootpki.tls.crypto.encode_private_key_pem(service_account_key),
            ),
            bootpki.tls.assets.Asset(
                name=AssetName.SERVICE_ACCOUNT_PUBLIC_KEY,
                data=bootpki.tls.crypto.encode_public_key_pem(
                    service_account_key.public_key()
                ),
            ),
            *_keypair_assets(
                AssetName.KUBELET_KEY, AssetName.KUBELET_CERT, kubelet_keypair
            ),
        )


def create_external_etcd_assets(
    *,
    certificate_authority: bootpki.tls.crypto.Keypair,
    etcd_servers: typing.Sequence[bootpki.tls.altnames.Endpoint],
    etcd_certificate_authority: typing.Optional[cryptography.x509.Certificate] = None,
    etcd_client: typing.Optional[bootpki.tls.crypto.Keypair] = None,
    project_configuration: bootpki.configuration.project.ProjectConfiguration = bootpki.configuration.project.PROJECT_CONFIGURATION,
) -> bootpki.tls.assets.AssetSet:
    """
    Build the assets for an etcd cluster which is not managed by Kubernetes.

    If an etcd certificate authority and client keypair are given, they are
    passed through and nothing is generated. Otherwise the master certificate
    authority also serves etcd, and client and peer certificates are issued
    for the hosts of etcd_servers.
    """
    with _building(EXTERNAL_ETCD_SUITE):
        if (etcd_certificate_authority is None) != (etcd_client is None):
            raise bootpki.errors.InputValidationError(
                "an etcd certificate authority and an etcd client keypair must "
                "be supplied together"
            )

        if etcd_certificate_authority is not None:
            assert etcd_client is not None
            return (
                _certificate_asset(AssetName.ETCD_CA_CERT, etcd_certificate_authority),
                *_keypair_assets(
                    AssetName.ETCD_CLIENT_KEY, AssetName.ETCD_CLIENT_CERT, etcd_client
                ),
            )

        alt_names = bootpki.tls.altnames.resolve_alt_names(etcd_servers)
        etcd_client = _issue(
            bootpki.tls.crypto.CertConfig(
                common_name="etcd-client",
                organization=(ETCD_ORGANIZATION,),
                alt_names=alt_names,
            ),
            certificate_authority=certificate_authority,
            project_configuration=project_configuration,
        )
        # Not consumed by self-hosted components
        etcd_peer = _issue(
            bootpki.tls.crypto.CertConfig(
                common_name="etcd-peer",
                organization=(ETCD_ORGANIZATION,),
                alt_names=alt_names,
            ),
            certificate_authority=certificate_authority,
            project_configuration=project_configuration,
        )

        return (
            *_keypair_assets(
                AssetName.ETCD_PEER_KEY, AssetName.ETCD_PEER_CERT, etcd_peer
            ),
            _certificate_asset(
                AssetName.ETCD_CA_CERT, certificate_authority.certificate
            ),
            *_keypair_assets(
                AssetName.ETCD_CLIENT_KEY, AssetName.ETCD_CLIENT_CERT, etcd_client
            ),
        )


def _parse_service_ip(
    value: typing.Union[str, bootpki.tls.crypto.IPAddress],
) -> bootpki.tls.crypto.IPAddress:
    # Service IPs are bare literals, so IPv6 must not go through port stripping
    try:
        return ipaddress.ip_address(value)
    except ValueError as e:
        raise bootpki.errors.InputValidationError(
            f"{value!r} is not a valid service IP"
        ) from e


def create_self_hosted_etcd_assets(
    *,
    etcd_service_ip: typing.Union[str, bootpki.tls.crypto.IPAddress],
    boot_etcd_service_ip: typing.Union[str, bootpki.tls.crypto.IPAddress],
    certificate_authority: bootpki.tls.crypto.Keypair,
    project_configuration: bootpki.configuration.project.ProjectConfiguration = bootpki.configuration.project.PROJECT_CONFIGURATION,
) -> bootpki.tls.assets.AssetSet:
    """
    Build server, peer and client assets for etcd running inside the cluster.
    Self-hosted etcd is always served by the master certificate authority and
    never accepts caller-supplied etcd certificates.
    """
    dns_names = project_configuration.self_hosted_etcd_dns_names

    def etcd_keypair(
        common_name: str, endpoints: typing.Sequence[bootpki.tls.altnames.Endpoint]
    ) -> bootpki.tls.crypto.Keypair:
        return _issue(
            bootpki.tls.crypto.CertConfig(
                common_name=common_name,
                organization=(ETCD_ORGANIZATION,),
                alt_names=bootpki.tls.altnames.resolve_alt_names(endpoints),
            ),
            certificate_authority=certificate_authority,
            project_configuration=project_configuration,
        )

    with _building(SELF_HOSTED_ETCD_SUITE):
        etcd_service_ip = _parse_service_ip(etcd_service_ip)
        boot_etcd_service_ip = _parse_service_ip(boot_etcd_service_ip)
        server = etcd_keypair(
            "etcd-server",
            [etcd_service_ip, boot_etcd_service_ip, "127.0.0.1", "localhost"]
            + list(dns_names),
        )
        peer = etcd_keypair("etcd-peer", [boot_etcd_service_ip] + list(dns_names))
        client = etcd_keypair("etcd-client", [])

        return (
            *_keypair_assets(
                AssetName.ETCD_SERVER_KEY, AssetName.ETCD_SERVER_CERT, server
            ),
            *_keypair_assets(AssetName.ETCD_PEER_KEY, AssetName.ETCD_PEER_CERT, peer),
            *_keypair_assets(
                AssetName.ETCD_CLIENT_KEY, AssetName.ETCD_CLIENT_CERT, client
            ),
            _certificate_asset(
                AssetName.ETCD_CA_CERT, certificate_authority.certificate
            ),
        )


def api_server_alt_names(
    cluster_configuration: bootpki.configuration.ClusterConfiguration,
) -> bootpki.tls.crypto.AltNames:
    "SANs of the apiserver: the API URL hosts and the kubernetes service IP"
    return bootpki.tls.altnames.resolve_alt_names(
        [*cluster_configuration.api_server_urls, cluster_configuration.api_service_ip]
    )


def create_cluster_assets(
    cluster_configuration: bootpki.configuration.ClusterConfiguration,
    *,
    certificate_authority: typing.Optional[bootpki.tls.crypto.Keypair] = None,
    etcd_certificate_authority: typing.Optional[cryptography.x509.Certificate] = None,
    etcd_client: typing.Optional[bootpki.tls.crypto.Keypair] = None,
    project_configuration: bootpki.configuration.project.ProjectConfiguration = bootpki.configuration.project.PROJECT_CONFIGURATION,
) -> bootpki.tls.assets.AssetSet:
    """
    Generate every TLS asset needed to bootstrap the cluster: the master suite
    followed by the etcd suite for the configured topology.
    """
    if cluster_configuration.self_hosted_etcd and (
        etcd_certificate_authority is not None or etcd_client is not None
    ):
        raise bootpki.errors.InputValidationError(
            "self-hosted etcd does not accept etcd certificates",
            suite=SELF_HOSTED_ETCD_SUITE,
        )

    if certificate_authority is None:
        logger.info("Generating certificate authority...")
        with _building(MASTER_SUITE):
            certificate_authority = create_certificate_authority(
                project_configuration=project_configuration
            )

    logger.info("Generating master TLS assets...")
    master_assets = create_master_assets(
        api_server_alt_names=api_server_alt_names(cluster_configuration),
        certificate_authority=certificate_authority,
        project_configuration=project_configuration,
    )

    etcd_assets: bootpki.tls.assets.AssetSet
    if cluster_configuration.self_hosted_etcd:
        logger.info("Generating self-hosted etcd TLS assets...")
        etcd_assets = create_self_hosted_etcd_assets(
            etcd_service_ip=cluster_configuration.etcd_service_ip,
            boot_etcd_service_ip=cluster_configuration.boot_etcd_service_ip,
            certificate_authority=certificate_authority,
            project_configuration=project_configuration,
        )
    else:
        logger.info("Generating external etcd TLS assets...")
        etcd_assets = create_external_etcd_assets(
            certificate_authority=certificate_authority,
            etcd_servers=cluster_configuration.etcd_server_urls,
            etcd_certificate_authority=etcd_certificate_authority,
            etcd_client=etcd_client,
            project_configuration=project_configuration,
        )

    assets = master_assets + etcd_assets
    bootpki.tls.assets.check_unique_names(assets)
    logger.info(f"Generated {len(assets)} TLS assets")
    return assets
