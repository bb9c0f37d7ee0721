"""Extraction of a node identifier (public key hex) from X.509 certificates."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from cryptography import x509

_log = logging.getLogger(__name__)

_TAG_SEQUENCE = 0x30
_TAG_BIT_STRING = 0x03
_TAG_VERSION = 0xA0


def _elements(der: bytes) -> Iterator[tuple[int, bytes]]:
    """Yield ``(tag, content)`` for consecutive DER elements in ``der``."""
    pos = 0
    size = len(der)
    while pos < size:
        if pos + 2 > size:
            raise ValueError("truncated DER element")
        tag = der[pos]
        length = der[pos + 1]
        pos += 2
        if length & 0x80:
            count = length & 0x7F
            if count == 0 or pos + count > size:
                raise ValueError("invalid DER length")
            length = int.from_bytes(der[pos:pos + count], "big")
            pos += count
        end = pos + length
        if end > size:
            raise ValueError("truncated DER content")
        yield tag, der[pos:end]
        pos = end


def _subject_public_key_bits(tbs_der: bytes) -> bytes:
    outer = list(_elements(tbs_der))
    if len(outer) != 1 or outer[0][0] != _TAG_SEQUENCE:
        raise ValueError("TBSCertificate is not a SEQUENCE")
    fields = list(_elements(outer[0][1]))
    if fields and fields[0][0] == _TAG_VERSION:
        fields = fields[1:]
    # serialNumber, signature, issuer, validity, subject, subjectPublicKeyInfo
    if len(fields) < 6 or fields[5][0] != _TAG_SEQUENCE:
        raise ValueError("subjectPublicKeyInfo not found")
    parts = list(_elements(fields[5][1]))
    if len(parts) < 2 or parts[1][0] != _TAG_BIT_STRING or not parts[1][1]:
        raise ValueError("subjectPublicKey bit string not found")
    return parts[1][1][1:]


def certificate_pub_hex(certificate: x509.Certificate) -> str:
    """Return the hex of the certificate's raw subject public key bits."""
    pub_hex = _subject_public_key_bits(certificate.tbs_certificate_bytes).hex()
    _log.info("[NODEINFO] SSLContext pubHex: %s", pub_hex)
    return pub_hex


def cert_file_to_pub_hex(cert_path: str | Path) -> str:
    """Read a PEM certificate file and return its public key hex."""
    try:
        content = Path(cert_path).read_bytes()
    except OSError:
        content = b""
    if not content:
        message = f"unable to load cert content, cert: {cert_path}"
        _log.warning("[NODEINFO] initCert2PubHexHandler cert=%s errorMessage=%s", cert_path, message)
        raise ValueError(message)

    try:
        certificate = x509.load_pem_x509_certificate(content)
    except ValueError as exc:
        message = f"unable to read PEM certificate, cert: {cert_path}"
        _log.warning("[NODEINFO] initCert2PubHexHandler cert=%s errorMessage=%s", cert_path, message)
        raise ValueError(message) from exc

    pub_hex = certificate_pub_hex(certificate)
    _log.info("[NODEINFO] initCert2PubHexHandler cert=%s pubHex=%s", cert_path, pub_hex)
    return pub_hex


def node_id_from_der(der_bytes: bytes) -> str:
    """Return the node id (public key hex) of a peer certificate given in DER form."""
    certificate = x509.load_der_x509_certificate(der_bytes)
    node_id = certificate_pub_hex(certificate)
    try:
        constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        _log.warning("[NODEINFO] Get ca basic failed")
    else:
        if constraints.value.ca:
            _log.debug("[NODEINFO] Ignore CA certificate")
    return node_id