#!/usr/bin/env python3
#
# This package contains key generation, certificate issuance and the TLS
# asset suites built from them.
