#!/usr/bin/env python3
#
# This package contains the exceptions raised while generating bootstrap TLS
# assets. None of them are retried; callers are expected to abort the whole
# bootstrap when one is raised.

import typing


class PKIError(Exception):
    "Base class for every error raised by this project"

    def __init__(
        self,
        message: str,
        *,
        role: typing.Optional[str] = None,
        suite: typing.Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        # Common name of the certificate or key being generated
        self.role = role
        # Name of the asset suite being built
        self.suite = suite

    def __str__(self) -> str:
        context = []
        if self.suite:
            context.append(f"suite={self.suite}")
        if self.role:
            context.append(f"role={self.role}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class KeyGenerationError(PKIError):
    "The key generation primitive failed"


class CertificateIssuanceError(PKIError):
    "The certificate signing primitive failed"


class InputValidationError(PKIError):
    "Caller-supplied input or configuration is malformed"
