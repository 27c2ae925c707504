"""PEM codec for the three-field certificate secret layout."""

from __future__ import annotations

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

CA_CERT_KEY = "ca.crt"
TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"


def encode_certificate(cert: x509.Certificate) -> bytes:
    """PEM block type ``CERTIFICATE``."""
    return cert.public_bytes(serialization.Encoding.PEM)


def encode_private_key(key: rsa.RSAPrivateKey) -> bytes:
    """PKCS#1, PEM block type ``RSA PRIVATE KEY``."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def decode_certificate(data: bytes | None) -> x509.Certificate:
    if not data:
        raise ValueError("certificate data is empty")
    return x509.load_pem_x509_certificate(data)


def decode_private_key(data: bytes | None) -> rsa.RSAPrivateKey | None:
    """Return the stored RSA key, or None when it cannot be parsed."""
    if not data:
        return None
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return None
    if not isinstance(key, rsa.RSAPrivateKey):
        return None
    return key


def secret_fields(ca_pem: bytes, cert_pem: bytes, key_pem: bytes) -> dict[str, bytes]:
    return {CA_CERT_KEY: ca_pem, TLS_CERT_KEY: cert_pem, TLS_KEY_KEY: key_pem}
