import bootpki.tls.crypto
import bootpki.tls.pki
import pytest


@pytest.fixture(scope="session")
def certificate_authority() -> bootpki.tls.crypto.Keypair:
    return bootpki.tls.pki.create_certificate_authority()


@pytest.fixture(scope="session")
def unrelated_certificate_authority() -> bootpki.tls.crypto.Keypair:
    return bootpki.tls.pki.create_certificate_authority()
