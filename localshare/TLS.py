#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# LocalShare - Local network file sharing
# Copyright (C) 2025-2026 LocalShare contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import datetime
import ipaddress
import os
import ssl
import tempfile

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from localshare.Kernel import getLogger

SELF_SIGNED_COMMON_NAME = 'LocalShare'
SELF_SIGNED_DNS_NAMES = ('localhost',)
SELF_SIGNED_IP_ADDRESSES = ('127.0.0.1', '0.0.0.0')
SELF_SIGNED_VALID_DAYS = 365

logger = getLogger(__name__)


def generateSelfSignedCertificate(commonName=SELF_SIGNED_COMMON_NAME, extraIPs=()):
    """
    Create an ephemeral key and a self-signed certificate for it.

    Returns:
        tuple: (certificatePEM, privateKeyPEM) as bytes
    """
    privateKey = ec.generate_private_key(ec.SECP256R1())

    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, commonName)])
    now = datetime.datetime.now(datetime.timezone.utc)

    altNames = [x509.DNSName(dnsName) for dnsName in SELF_SIGNED_DNS_NAMES]
    for host in dict.fromkeys((*SELF_SIGNED_IP_ADDRESSES, *extraIPs)):
        try:
            altNames.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            # A host name given with --host
            altNames.append(x509.DNSName(host))

    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(privateKey.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=SELF_SIGNED_VALID_DAYS))
        .add_extension(x509.SubjectAlternativeName(altNames), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(privateKey, hashes.SHA256())
    )

    certificatePEM = certificate.public_bytes(serialization.Encoding.PEM)
    privateKeyPEM = privateKey.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    return certificatePEM, privateKeyPEM


def createSSLContext(certFile=None, keyFile=None, extraIPs=()):
    """
    Server-side TLS context from PEM files, or from a fresh self-signed certificate
    when neither file is given.

    Raises:
        ValueError: If only one of certFile/keyFile is given
        ssl.SSLError, OSError: If the files can't be loaded
    """
    if bool(certFile) != bool(keyFile):
        raise ValueError('Certificate and key must be given together')

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    if certFile:
        context.load_cert_chain(certfile=certFile, keyfile=keyFile)
        logger.info(f"Loaded TLS certificate from {certFile}")
        return context

    certificatePEM, privateKeyPEM = generateSelfSignedCertificate(extraIPs=extraIPs)

    # load_cert_chain only reads files; they live just long enough to be loaded.
    with tempfile.TemporaryDirectory(prefix='localshare-tls-') as tempDir:
        certPath = os.path.join(tempDir, 'cert.pem')
        keyPath = os.path.join(tempDir, 'key.pem')

        with open(certPath, 'wb') as f:
            f.write(certificatePEM)
        with open(os.open(keyPath, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600), 'wb') as f:
            f.write(privateKeyPEM)

        context.load_cert_chain(certfile=certPath, keyfile=keyPath)

    logger.info("Using an ephemeral self-signed TLS certificate")
    return context
