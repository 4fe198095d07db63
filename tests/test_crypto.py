import bootpki.configuration.project
import bootpki.errors
import bootpki.tls.crypto
import cryptography.exceptions
import cryptography.hazmat.primitives.asymmetric.ec as elliptic_curve
import cryptography.hazmat.primitives.asymmetric.rsa as rsa
import cryptography.hazmat.primitives.serialization as serialization
import cryptography.x509 as x509
import ipaddress
import pytest
import x509_helpers


def _leaf_config(**kwargs) -> bootpki.tls.crypto.CertConfig:
    return bootpki.tls.crypto.CertConfig(
        common_name="test-leaf",
        organization=("test-group",),
        alt_names=bootpki.tls.crypto.AltNames(
            dns_names=("leaf.example.com",),
            ip_addresses=(ipaddress.ip_address("10.0.0.1"),),
        ),
        **kwargs,
    )


def test_certificate_authority_is_self_signed(certificate_authority):
    certificate = certificate_authority.certificate
    certificate.verify_directly_issued_by(certificate)
    assert certificate.issuer == certificate.subject
    assert x509_helpers.common_name(certificate) == "kube-ca"
    assert x509_helpers.organizations(certificate) == ["bootkube"]


def test_certificate_authority_can_sign(certificate_authority):
    extensions = certificate_authority.certificate.extensions
    basic_constraints = extensions.get_extension_for_class(x509.BasicConstraints)
    assert basic_constraints.critical
    assert basic_constraints.value.ca
    key_usage = extensions.get_extension_for_class(x509.KeyUsage).value
    assert key_usage.key_cert_sign
    assert key_usage.crl_sign


def test_leaf_verifies_against_its_certificate_authority(certificate_authority):
    keypair = bootpki.tls.crypto.generate_keypair(
        _leaf_config(), certificate_authority=certificate_authority
    )
    keypair.certificate.verify_directly_issued_by(certificate_authority.certificate)


def test_leaf_does_not_verify_against_unrelated_certificate_authority(
    certificate_authority, unrelated_certificate_authority
):
    keypair = bootpki.tls.crypto.generate_keypair(
        _leaf_config(), certificate_authority=certificate_authority
    )
    with pytest.raises((ValueError, cryptography.exceptions.InvalidSignature)):
        keypair.certificate.verify_directly_issued_by(
            unrelated_certificate_authority.certificate
        )


def test_leaf_is_valid_for_server_and_client_auth(certificate_authority):
    certificate = bootpki.tls.crypto.generate_keypair(
        _leaf_config(), certificate_authority=certificate_authority
    ).certificate
    extended_key_usage = certificate.extensions.get_extension_for_class(
        x509.ExtendedKeyUsage
    ).value
    assert x509.oid.ExtendedKeyUsageOID.SERVER_AUTH in extended_key_usage
    assert x509.oid.ExtendedKeyUsageOID.CLIENT_AUTH in extended_key_usage
    basic_constraints = certificate.extensions.get_extension_for_class(
        x509.BasicConstraints
    ).value
    assert not basic_constraints.ca


def test_leaf_subject_and_alt_names(certificate_authority):
    certificate = bootpki.tls.crypto.generate_keypair(
        bootpki.tls.crypto.CertConfig(
            common_name="multi",
            organization=("first", "second"),
            alt_names=bootpki.tls.crypto.AltNames(
                dns_names=("a.example.com", "b.example.com", "a.example.com"),
                ip_addresses=(ipaddress.ip_address("::1"),),
            ),
        ),
        certificate_authority=certificate_authority,
    ).certificate
    assert x509_helpers.common_name(certificate) == "multi"
    assert x509_helpers.organizations(certificate) == ["first", "second"]
    assert x509_helpers.dns_names(certificate) == [
        "a.example.com",
        "b.example.com",
        "a.example.com",
    ]
    assert x509_helpers.ip_addresses(certificate) == [ipaddress.ip_address("::1")]
    assert certificate.issuer == certificate_authority.certificate.subject


def test_leaf_without_alt_names_has_no_san_extension(certificate_authority):
    certificate = bootpki.tls.crypto.generate_keypair(
        bootpki.tls.crypto.CertConfig(common_name="client"),
        certificate_authority=certificate_authority,
    ).certificate
    assert not x509_helpers.has_alt_names(certificate)


def test_issuance_only_differs_in_key_material_and_serial(certificate_authority):
    first = bootpki.tls.crypto.generate_keypair(
        _leaf_config(), certificate_authority=certificate_authority
    )
    second = bootpki.tls.crypto.generate_keypair(
        _leaf_config(), certificate_authority=certificate_authority
    )
    assert first.certificate.subject == second.certificate.subject
    assert x509_helpers.dns_names(first.certificate) == x509_helpers.dns_names(
        second.certificate
    )
    assert x509_helpers.ip_addresses(
        first.certificate
    ) == x509_helpers.ip_addresses(second.certificate)
    assert first.certificate.serial_number != second.certificate.serial_number
    assert bootpki.tls.crypto.encode_public_key_pem(
        first.private_key.public_key()
    ) != bootpki.tls.crypto.encode_public_key_pem(second.private_key.public_key())


def test_cert_config_requires_common_name():
    with pytest.raises(bootpki.errors.InputValidationError):
        bootpki.tls.crypto.CertConfig(common_name="")


def test_alt_names_extend_returns_new_value():
    base = bootpki.tls.crypto.AltNames(dns_names=["a"])
    extended = base.extend(
        bootpki.tls.crypto.AltNames(
            dns_names=("a", "b"), ip_addresses=(ipaddress.ip_address("10.0.0.1"),)
        )
    )
    assert base.dns_names == ("a",)
    assert extended.dns_names == ("a", "a", "b")
    assert extended.ip_addresses == (ipaddress.ip_address("10.0.0.1"),)
    assert not bootpki.tls.crypto.AltNames()


def test_generate_ecdsa_keypair(certificate_authority):
    keypair = bootpki.tls.crypto.generate_keypair(
        _leaf_config(),
        certificate_authority=certificate_authority,
        algorithm=bootpki.configuration.project.KeyAlgorithm.ECDSA_P256,
    )
    assert isinstance(keypair.private_key, elliptic_curve.EllipticCurvePrivateKey)
    keypair.certificate.verify_directly_issued_by(certificate_authority.certificate)


def test_default_private_key_is_rsa_2048():
    private_key = bootpki.tls.crypto.generate_private_key()
    assert isinstance(private_key, rsa.RSAPrivateKey)
    assert private_key.key_size == 2048


def test_private_key_round_trip():
    for algorithm in bootpki.configuration.project.KeyAlgorithm:
        encoded = bootpki.tls.crypto.encode_private_key_pem(
            bootpki.tls.crypto.generate_private_key(algorithm)
        )
        decoded = bootpki.tls.crypto.decode_private_key_pem(encoded)
        assert bootpki.tls.crypto.encode_private_key_pem(decoded) == encoded


def test_certificate_round_trip(certificate_authority):
    encoded = bootpki.tls.crypto.encode_certificate_pem(
        certificate_authority.certificate
    )
    decoded = bootpki.tls.crypto.decode_certificate_pem(encoded)
    assert bootpki.tls.crypto.encode_certificate_pem(decoded) == encoded
    assert encoded.startswith(b"-----BEGIN CERTIFICATE-----")


def test_public_key_is_subject_public_key_info():
    private_key = bootpki.tls.crypto.generate_private_key()
    encoded = bootpki.tls.crypto.encode_public_key_pem(private_key.public_key())
    assert encoded.startswith(b"-----BEGIN PUBLIC KEY-----")


@pytest.mark.parametrize("data", [b"", b"not a pem", b"-----BEGIN CERTIFICATE-----"])
def test_decode_malformed_pem(data):
    with pytest.raises(bootpki.errors.InputValidationError):
        bootpki.tls.crypto.decode_certificate_pem(data)
    with pytest.raises(bootpki.errors.InputValidationError):
        bootpki.tls.crypto.decode_private_key_pem(data)


def test_load_keypair(certificate_authority):
    keypair = bootpki.tls.crypto.load_keypair(
        certificate_pem=bootpki.tls.crypto.encode_certificate_pem(
            certificate_authority.certificate
        ),
        private_key_pem=bootpki.tls.crypto.encode_private_key_pem(
            certificate_authority.private_key
        ),
    )
    assert keypair.certificate == certificate_authority.certificate


def test_load_keypair_rejects_mismatched_key(certificate_authority):
    with pytest.raises(bootpki.errors.InputValidationError):
        bootpki.tls.crypto.load_keypair(
            certificate_pem=bootpki.tls.crypto.encode_certificate_pem(
                certificate_authority.certificate
            ),
            private_key_pem=bootpki.tls.crypto.encode_private_key_pem(
                bootpki.tls.crypto.generate_private_key()
            ),
        )


def test_key_generation_failure(monkeypatch):
    def fail(**kwargs):
        raise ValueError("entropy source unavailable")

    monkeypatch.setattr(rsa, "generate_private_key", fail)
    with pytest.raises(bootpki.errors.KeyGenerationError) as e:
        bootpki.tls.crypto.generate_private_key(role="kubelet")
    assert e.value.role == "kubelet"
    assert isinstance(e.value.__cause__, ValueError)


def test_signing_failure(monkeypatch, certificate_authority):
    def fail(self, *args, **kwargs):
        raise ValueError("signing failed")

    monkeypatch.setattr(x509.CertificateBuilder, "sign", fail)
    with pytest.raises(bootpki.errors.CertificateIssuanceError) as e:
        bootpki.tls.crypto.generate_signed_certificate(
            _leaf_config(),
            public_key=certificate_authority.private_key.public_key(),
            certificate_authority=certificate_authority,
        )
    assert e.value.role == "test-leaf"
    assert "role=test-leaf" in str(e.value)


def test_key_generation_internal_error(monkeypatch):
    def fail(**kwargs):
        raise cryptography.exceptions.InternalError("rng failure", [])

    monkeypatch.setattr(rsa, "generate_private_key", fail)
    with pytest.raises(bootpki.errors.KeyGenerationError) as e:
        bootpki.tls.crypto.generate_private_key(role="kubelet")
    assert e.value.role == "kubelet"
    assert isinstance(e.value.__cause__, cryptography.exceptions.InternalError)


def test_signing_internal_error(monkeypatch, certificate_authority):
    def fail(self, *args, **kwargs):
        raise cryptography.exceptions.InternalError("signing failed", [])

    monkeypatch.setattr(x509.CertificateBuilder, "sign", fail)
    with pytest.raises(bootpki.errors.CertificateIssuanceError) as e:
        bootpki.tls.crypto.generate_signed_certificate(
            _leaf_config(),
            public_key=certificate_authority.private_key.public_key(),
            certificate_authority=certificate_authority,
        )
    assert e.value.role == "test-leaf"


def test_programming_errors_are_not_wrapped(monkeypatch, certificate_authority):
    def fail(self, *args, **kwargs):
        raise TypeError("unexpected argument")

    monkeypatch.setattr(x509.CertificateBuilder, "sign", fail)
    with pytest.raises(TypeError):
        bootpki.tls.crypto.generate_signed_certificate(
            _leaf_config(),
            public_key=certificate_authority.private_key.public_key(),
            certificate_authority=certificate_authority,
        )


def test_decode_encrypted_private_key():
    private_key = bootpki.tls.crypto.generate_private_key()
    encrypted = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(b"secret"),
    )
    with pytest.raises(bootpki.errors.InputValidationError):
        bootpki.tls.crypto.decode_private_key_pem(encrypted)
