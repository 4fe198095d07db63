#!/usr/bin/env python3
#
# Provides the primitive operations used to build the bootstrap Public Key
# Infrastructure (PKI) of a Kubernetes cluster: key generation, certificate
# issuance and PEM encoding.

import bootpki.configuration.project
import bootpki.errors
import cryptography.exceptions
import cryptography.hazmat.backends as crypto_backends
import cryptography.hazmat.primitives.asymmetric.ec as elliptic_curve
import cryptography.hazmat.primitives.asymmetric.rsa as rsa
import cryptography.hazmat.primitives.hashes
import cryptography.hazmat.primitives.serialization as serialization
import cryptography.x509 as x509
import dataclasses
import datetime
import ipaddress
import typing

PrivateKey = typing.Union[rsa.RSAPrivateKey, elliptic_curve.EllipticCurvePrivateKey]
PublicKey = typing.Union[rsa.RSAPublicKey, elliptic_curve.EllipticCurvePublicKey]
IPAddress = typing.Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Exceptions raised by the cryptography library when a primitive operation
# fails
_PRIMITIVE_ERRORS = (
    ValueError,
    cryptography.exceptions.InternalError,
    cryptography.exceptions.UnsupportedAlgorithm,
)

_project = bootpki.configuration.project.PROJECT_CONFIGURATION


@dataclasses.dataclass(frozen=True)
class AltNames:
    """
    Subject Alternative Names of a certificate. DNS names and IP addresses
    keep the order in which they were added, and duplicates are kept.
    """

    dns_names: typing.Tuple[str, ...] = ()
    ip_addresses: typing.Tuple[IPAddress, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "dns_names", tuple(self.dns_names))
        object.__setattr__(self, "ip_addresses", tuple(self.ip_addresses))

    def __bool__(self) -> bool:
        return bool(self.dns_names or self.ip_addresses)

    def extend(self, other: "AltNames") -> "AltNames":
        "Returns new AltNames with the names of other appended to this one's"
        return AltNames(
            dns_names=self.dns_names + other.dns_names,
            ip_addresses=self.ip_addresses + other.ip_addresses,
        )

    def general_names(self) -> typing.List[x509.GeneralName]:
        names: typing.List[x509.GeneralName] = [
            x509.DNSName(name) for name in self.dns_names
        ]
        names.extend(x509.IPAddress(ip) for ip in self.ip_addresses)
        return names


@dataclasses.dataclass(frozen=True)
class CertConfig:
    "Subject identity and SANs of a certificate"
    common_name: str
    organization: typing.Tuple[str, ...] = ()
    alt_names: AltNames = dataclasses.field(default_factory=AltNames)

    def __post_init__(self):
        if not self.common_name:
            raise bootpki.errors.InputValidationError(
                "certificate common name must not be empty"
            )
        object.__setattr__(self, "organization", tuple(self.organization))


@dataclasses.dataclass(frozen=True)
class Keypair:
    private_key: PrivateKey
    certificate: x509.Certificate


def standard_hash_algorithm() -> cryptography.hazmat.primitives.hashes.HashAlgorithm:
    return cryptography.hazmat.primitives.hashes.SHA256()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def generate_private_key(
    algorithm: bootpki.configuration.project.KeyAlgorithm = _project.key_algorithm,
    *,
    role: typing.Optional[str] = None,
) -> PrivateKey:
    """
    Generate a new private key. Raises KeyGenerationError if the underlying
    primitive fails; the failure is not retried.
    """
    try:
        if algorithm == bootpki.configuration.project.KeyAlgorithm.RSA_2048:
            return rsa.generate_private_key(
                public_exponent=65537,
                key_size=2048,
                backend=crypto_backends.default_backend(),
            )
        if algorithm == bootpki.configuration.project.KeyAlgorithm.ECDSA_P256:
            # P-256 is significantly faster than P-384 and P-521 and is
            # considered secure.
            return elliptic_curve.generate_private_key(
                curve=elliptic_curve.SECP256R1(),
                backend=crypto_backends.default_backend(),
            )
    except _PRIMITIVE_ERRORS as e:
        raise bootpki.errors.KeyGenerationError(
            f"failed to generate {algorithm.name} private key: {e}", role=role
        ) from e
    raise bootpki.errors.KeyGenerationError(
        f"unsupported key algorithm {algorithm}", role=role
    )


def standard_key_usage() -> x509.KeyUsage:
    return x509.KeyUsage(
        content_commitment=False,
        crl_sign=False,
        data_encipherment=False,
        decipher_only=False,
        digital_signature=True,
        encipher_only=False,
        key_agreement=False,
        key_cert_sign=False,
        key_encipherment=True,
    )


def standard_extended_key_usage() -> x509.ExtendedKeyUsage:
    # Every leaf certificate is valid for both ends of a TLS connection.
    # crypto/tls based clients such as etcd require the client auth usage.
    # https://etcd.io/docs/v3.4.0/op-guide/security/#im-seeing-a-sslv3-alert-handshake-failure-when-using-tls-client-authentication
    return x509.ExtendedKeyUsage(
        usages=[
            x509.oid.ExtendedKeyUsageOID.SERVER_AUTH,
            x509.oid.ExtendedKeyUsageOID.CLIENT_AUTH,
        ]
    )


def generate_subject_name(
    common_name: str, *, organization: typing.Sequence[str] = ()
) -> x509.Name:
    attributes = [x509.NameAttribute(x509.oid.NameOID.COMMON_NAME, common_name)]
    attributes.extend(
        x509.NameAttribute(x509.oid.NameOID.ORGANIZATION_NAME, o) for o in organization
    )
    return x509.Name(attributes)


def generate_certificate_authority_certificate(
    config: CertConfig,
    *,
    signing_key: PrivateKey,
    validity: datetime.timedelta = _project.ca_validity,
) -> x509.Certificate:
    """
    Self-sign a certificate authority certificate for the given signing key.
    Raises CertificateIssuanceError if signing fails.
    """
    name = generate_subject_name(config.common_name, organization=config.organization)
    now = _now()
    try:
        # https://cryptography.io/en/latest/x509/reference/#x-509-certificate-builder
        return (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .add_extension(
                # https://tools.ietf.org/html/rfc5280#section-4.2.1.9
                x509.BasicConstraints(ca=True, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    content_commitment=False,
                    crl_sign=True,
                    data_encipherment=False,
                    decipher_only=False,
                    digital_signature=True,
                    encipher_only=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    key_encipherment=True,
                ),
                critical=True,
            )
            .add_extension(
                # https://tools.ietf.org/html/rfc5280#section-4.2.1.2
                x509.SubjectKeyIdentifier.from_public_key(signing_key.public_key()),
                critical=False,
            )
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + validity)
            .public_key(signing_key.public_key())
            .sign(
                private_key=signing_key,
                algorithm=standard_hash_algorithm(),
                backend=crypto_backends.default_backend(),
            )
        )
    except _PRIMITIVE_ERRORS as e:
        raise bootpki.errors.CertificateIssuanceError(
            f"failed to self-sign certificate authority: {e}",
            role=config.common_name,
        ) from e


def generate_signed_certificate(
    config: CertConfig,
    *,
    public_key: PublicKey,
    certificate_authority: Keypair,
    validity: datetime.timedelta = _project.leaf_validity,
) -> x509.Certificate:
    """
    Issue a leaf certificate for public_key, signed by the given certificate
    authority. The certificate is valid for both server and client
    authentication. Raises CertificateIssuanceError if signing fails; no
    partial certificate is returned.
    """
    now = _now()
    try:
        certificate_builder = (
            x509.CertificateBuilder()
            .subject_name(
                generate_subject_name(
                    config.common_name, organization=config.organization
                )
            )
            .issuer_name(certificate_authority.certificate.subject)
            .public_key(public_key)
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None), critical=True
            )
            .add_extension(standard_key_usage(), critical=True)
            .add_extension(standard_extended_key_usage(), critical=False)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    certificate_authority.private_key.public_key()
                ),
                critical=False,
            )
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + validity)
        )
        if config.alt_names:
            certificate_builder = certificate_builder.add_extension(
                x509.SubjectAlternativeName(config.alt_names.general_names()),
                critical=False,
            )
        return certificate_builder.sign(
            private_key=certificate_authority.private_key,
            algorithm=standard_hash_algorithm(),
            backend=crypto_backends.default_backend(),
        )
    except _PRIMITIVE_ERRORS as e:
        raise bootpki.errors.CertificateIssuanceError(
            f"failed to sign certificate: {e}", role=config.common_name
        ) from e


def generate_keypair(
    config: CertConfig,
    *,
    certificate_authority: Keypair,
    algorithm: bootpki.configuration.project.KeyAlgorithm = _project.key_algorithm,
    validity: datetime.timedelta = _project.leaf_validity,
) -> Keypair:
    "Generate a new private key and issue a certificate for it"
    private_key = generate_private_key(algorithm, role=config.common_name)
    return Keypair(
        private_key=private_key,
        certificate=generate_signed_certificate(
            config,
            public_key=private_key.public_key(),
            certificate_authority=certificate_authority,
            validity=validity,
        ),
    )


def encode_private_key_pem(private_key: PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def encode_public_key_pem(public_key: PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def encode_certificate_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def decode_private_key_pem(data: bytes) -> PrivateKey:
    try:
        private_key = serialization.load_pem_private_key(
            data, password=None, backend=crypto_backends.default_backend()
        )
    except _PRIMITIVE_ERRORS + (TypeError,) as e:
        # TypeError signals an encrypted key, which needs a password
        raise bootpki.errors.InputValidationError(
            f"malformed PEM private key: {e}"
        ) from e
    if not isinstance(
        private_key, (rsa.RSAPrivateKey, elliptic_curve.EllipticCurvePrivateKey)
    ):
        raise bootpki.errors.InputValidationError(
            f"unsupported private key type {type(private_key).__name__}"
        )
    return private_key


def decode_certificate_pem(data: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(
            data, backend=crypto_backends.default_backend()
        )
    except _PRIMITIVE_ERRORS as e:
        raise bootpki.errors.InputValidationError(
            f"malformed PEM certificate: {e}"
        ) from e


def load_keypair(*, certificate_pem: bytes, private_key_pem: bytes) -> Keypair:
    """
    Decode a pre-existing certificate and its private key, e.g. a certificate
    authority supplied by the operator. Raises InputValidationError if either
    is malformed or if the key does not belong to the certificate.
    """
    certificate = decode_certificate_pem(certificate_pem)
    private_key = decode_private_key_pem(private_key_pem)
    if encode_public_key_pem(private_key.public_key()) != encode_public_key_pem(
        certificate.public_key()
    ):
        raise bootpki.errors.InputValidationError(
            "private key does not match certificate",
            role=certificate.subject.rfc4514_string(),
        )
    return Keypair(private_key=private_key, certificate=certificate)
