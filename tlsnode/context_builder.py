"""Construction of :class:`ssl.SSLContext` objects from a :class:`ContextConfig`."""

from __future__ import annotations

import logging
import os
import ssl
import tempfile
from contextlib import contextmanager
from collections.abc import Iterator
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from tlsnode.context_config import SM_SSL, CertConfig, ContextConfig, SMCertConfig

_log = logging.getLogger(__name__)


class SslContextError(RuntimeError):
    """Raised when a TLS context cannot be built from the given certificates."""


def _load_pem_certificate(pem: str | bytes) -> x509.Certificate:
    data = pem.encode() if isinstance(pem, str) else pem
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as exc:
        raise SslContextError("unable to read PEM certificate") from exc


def _load_pem_private_key(pem: str | bytes):
    data = pem.encode() if isinstance(pem, str) else pem
    try:
        return serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        raise SslContextError("unable to read PEM private key") from exc


def _public_bytes(key) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def _check_private_key(cert_pem: str | bytes, key_pem: str | bytes, what: str) -> None:
    certificate = _load_pem_certificate(cert_pem)
    private_key = _load_pem_private_key(key_pem)
    if _public_bytes(certificate.public_key()) != _public_bytes(private_key.public_key()):
        raise SslContextError(f"{what} error: private key does not match the certificate")


@contextmanager
def _pem_files(cert_pem: str, key_pem: str) -> Iterator[tuple[str, str]]:
    """Write certificate and key contents to private temporary files."""
    with tempfile.TemporaryDirectory() as directory:
        cert_file = os.path.join(directory, "node.crt")
        key_file = os.path.join(directory, "node.key")
        Path(cert_file).write_text(cert_pem, encoding="utf-8")
        Path(key_file).write_text(key_pem, encoding="utf-8")
        os.chmod(key_file, 0o600)
        yield cert_file, key_file


class ContextBuilder:
    """Builds TLS contexts for servers and clients from certificate configuration."""

    def __init__(self, module_name: str = "DEFAULT") -> None:
        self.module_name = module_name

    def read_file_content(self, path: str | os.PathLike) -> bytes:
        """Return the bytes of ``path``, or empty bytes if it cannot be read."""
        try:
            return Path(path).read_bytes()
        except OSError:
            return b""

    def build_ssl_context(self, server: bool, config: ContextConfig | str) -> ssl.SSLContext:
        """Build a TLS context from a :class:`ContextConfig` or an INI file path."""
        if not isinstance(config, ContextConfig):
            config_path = os.fspath(config)
            loaded = ContextConfig(module_name=self.module_name)
            loaded.init_config(config_path)
            config = loaded

        if config.ssl_type == SM_SSL:
            if config.is_cert_path:
                return self._build_sm_from_files(server, config.sm_cert_config)
            return self._build_sm_from_content(server, config.sm_cert_config)

        if config.is_cert_path:
            return self._build_from_files(server, config.cert_config)
        return self._build_from_content(server, config.cert_config)

    def _new_context(self, server: bool) -> ssl.SSLContext:
        protocol = ssl.PROTOCOL_TLS_SERVER if server else ssl.PROTOCOL_TLS_CLIENT
        context = ssl.SSLContext(protocol)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.maximum_version = ssl.TLSVersion.TLSv1_2
        context.check_hostname = False
        return context

    def _finish(self, context: ssl.SSLContext, ca_pem: str) -> ssl.SSLContext:
        if not ca_pem.strip():
            raise SslContextError("add_certificate_authority error: empty CA certificate")
        try:
            context.load_verify_locations(cadata=ca_pem)
        except (ssl.SSLError, ValueError) as exc:
            raise SslContextError(f"add_certificate_authority error: {exc}") from exc
        context.verify_mode = ssl.CERT_REQUIRED
        return context

    def _build_from_files(self, server: bool, cert_config: CertConfig) -> ssl.SSLContext:
        context = self._new_context(server)
        key_content = self.read_file_content(cert_config.node_key)
        if not key_content:
            raise SslContextError(f"use_private_key error: unable to read {cert_config.node_key}")
        try:
            context.load_cert_chain(cert_config.node_cert, cert_config.node_key)
        except (ssl.SSLError, OSError) as exc:
            raise SslContextError(f"use_certificate_chain_file error: {exc}") from exc
        ca_content = self.read_file_content(cert_config.ca_cert)
        _log.info("[%s][CTX] built ssl context from files server=%s", self.module_name, server)
        return self._finish(context, ca_content.decode("utf-8", errors="replace"))

    def _build_from_content(self, server: bool, cert_config: CertConfig) -> ssl.SSLContext:
        context = self._new_context(server)
        try:
            with _pem_files(cert_config.node_cert, cert_config.node_key) as (cert_file, key_file):
                context.load_cert_chain(cert_file, key_file)
        except (ssl.SSLError, OSError) as exc:
            raise SslContextError(f"use_certificate_chain error: {exc}") from exc
        _log.info("[%s][CTX] built ssl context from content server=%s", self.module_name, server)
        return self._finish(context, cert_config.ca_cert)

    def _unsupported_sm(self) -> SslContextError:
        return SslContextError(
            "sm_ssl requires a TLS implementation with dual (sign/encrypt) certificates, "
            "which is not available"
        )

    def _build_sm_from_files(self, server: bool, sm_config: SMCertConfig) -> ssl.SSLContext:
        node_cert = self.read_file_content(sm_config.node_cert)
        node_key = self.read_file_content(sm_config.node_key)
        if not node_cert:
            raise SslContextError("SSL_CTX_use_certificate_file error")
        if not node_key:
            raise SslContextError("SSL_CTX_use_PrivateKey_file error")
        _check_private_key(node_cert, node_key, "SSL_CTX_check_private_key")
        en_cert = self.read_file_content(sm_config.en_node_cert)
        en_key = self.read_file_content(sm_config.en_node_key)
        if not en_cert:
            raise SslContextError("SSL_CTX_use_enc_certificate_file error")
        if not en_key:
            raise SslContextError("SSL_CTX_use_enc_PrivateKey_file error")
        _check_private_key(en_cert, en_key, "SSL_CTX_check_enc_private_key")
        raise self._unsupported_sm()

    def _build_sm_from_content(self, server: bool, sm_config: SMCertConfig) -> ssl.SSLContext:
        _check_private_key(sm_config.node_cert, sm_config.node_key, "SSL_CTX_check_private_key")
        _check_private_key(
            sm_config.en_node_cert, sm_config.en_node_key, "SSL_CTX_check_enc_private_key"
        )
        raise self._unsupported_sm()