#!/usr/bin/env python3
#
# This module classifies endpoints (hostnames, host:port strings, URLs and IP
# addresses) into the DNS name and IP address sets of a certificate's Subject
# Alternative Names.

import bootpki.errors
import bootpki.tls.crypto
import ipaddress
import typing
import yarl

Endpoint = typing.Union[
    str, yarl.URL, ipaddress.IPv4Address, ipaddress.IPv6Address,
]


def strip_port(hostport: str) -> str:
    """
    Returns the host portion of a host:port string. Bracketed IPv6 literals
    such as [::1]:2379 are returned without their brackets.
    """
    if ":" not in hostport:
        return hostport
    if "]" in hostport:
        host = hostport[: hostport.index("]")]
        return host[1:] if host.startswith("[") else host
    return hostport[: hostport.index(":")]


def _a_label(hostname: str) -> str:
    # x509 DNS names must be ASCII; yarl encodes internationalised names with
    # IDNA
    if hostname.isascii():
        return hostname
    try:
        return yarl.URL.build(scheme="https", host=hostname).raw_host
    except ValueError as e:
        raise bootpki.errors.InputValidationError(
            f"host {hostname!r} is not a valid DNS name"
        ) from e


def _hostname(endpoint: Endpoint) -> typing.Union[str, bootpki.tls.crypto.IPAddress]:
    if isinstance(endpoint, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return endpoint
    if isinstance(endpoint, yarl.URL):
        # raw_host is IDNA-encoded and has no port or IPv6 brackets
        if not endpoint.raw_host:
            raise bootpki.errors.InputValidationError(
                f"URL {endpoint.human_repr()} has no host"
            )
        return endpoint.raw_host
    hostname = strip_port(endpoint)
    if not hostname:
        raise bootpki.errors.InputValidationError(
            f"endpoint {endpoint!r} has no host"
        )
    return _a_label(hostname)


def resolve_alt_names(
    endpoints: typing.Iterable[Endpoint],
) -> bootpki.tls.crypto.AltNames:
    """
    Sort the given endpoints into IP address and DNS name SANs. Any host which
    does not parse as an IP address is treated as a DNS name. The order of the
    endpoints is preserved within each set.
    """
    dns_names: typing.List[str] = []
    ip_addresses: typing.List[bootpki.tls.crypto.IPAddress] = []
    for endpoint in endpoints:
        hostname = _hostname(endpoint)
        if not isinstance(hostname, str):
            ip_addresses.append(hostname)
            continue
        try:
            ip_addresses.append(ipaddress.ip_address(hostname))
        except ValueError:
            dns_names.append(hostname)
    return bootpki.tls.crypto.AltNames(
        dns_names=tuple(dns_names), ip_addresses=tuple(ip_addresses)
    )
