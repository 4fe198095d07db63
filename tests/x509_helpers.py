import cryptography.x509 as x509
import typing


def subject_values(certificate: x509.Certificate, oid: x509.ObjectIdentifier) -> list:
    return [attribute.value for attribute in certificate.subject.get_attributes_for_oid(oid)]


def common_name(certificate: x509.Certificate) -> str:
    return subject_values(certificate, x509.oid.NameOID.COMMON_NAME)[0]


def organizations(certificate: x509.Certificate) -> list:
    return subject_values(certificate, x509.oid.NameOID.ORGANIZATION_NAME)


def dns_names(certificate: x509.Certificate) -> typing.List[str]:
    extension = certificate.extensions.get_extension_for_class(
        x509.SubjectAlternativeName
    )
    return extension.value.get_values_for_type(x509.DNSName)


def ip_addresses(certificate: x509.Certificate) -> list:
    extension = certificate.extensions.get_extension_for_class(
        x509.SubjectAlternativeName
    )
    return extension.value.get_values_for_type(x509.IPAddress)


def has_alt_names(certificate: x509.Certificate) -> bool:
    try:
        certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return False
    return True
