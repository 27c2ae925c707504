"""Self-signed certificate authorities stored as secrets."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from obsfleet.certs.pem import (
    TLS_CERT_KEY,
    TLS_KEY_KEY,
    decode_certificate,
    decode_private_key,
    encode_certificate,
    encode_private_key,
    secret_fields,
)
from obsfleet.errors import AuthorityInvalidError, AuthorityMissingError
from obsfleet.store.base import ObjectStore, decode_data, encode_data, new_object, owner_reference
from obsfleet.store.errors import NotFoundError

logger = structlog.get_logger("obsfleet.certs.authority")

KEY_SIZE = 2048
SERIAL_BITS = 128
AUTHORITY_YEARS = 5
ORGANIZATION = "Red Hat, Inc."
COUNTRY = "US"


def add_years(start: datetime, years: int) -> datetime:
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        # Feb 29 -> Mar 1, matching a calendar-day carry.
        return start.replace(year=start.year + years, month=3, day=1)


def new_serial_number() -> int:
    """Uniformly random, strictly positive, below 2**128."""
    return secrets.randbelow((1 << SERIAL_BITS) - 1) + 1


def generate_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)


def subject_name(cn: str, ou: list[str] | None = None) -> x509.Name:
    attributes = [
        x509.NameAttribute(NameOID.COUNTRY_NAME, COUNTRY),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
    ]
    for unit in ou or []:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, unit))
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, cn))
    return x509.Name(attributes)


def create_ca_certificate(
    cn: str,
    key: rsa.RSAPrivateKey | None = None,
) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    if key is None:
        key = generate_key()
    name = subject_name(cn)
    not_before = datetime.now(timezone.utc) - timedelta(minutes=1)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(new_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(add_years(not_before, AUTHORITY_YEARS))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(private_key=key, algorithm=hashes.SHA256())
    )
    return key, cert


def _authority_fields(key: rsa.RSAPrivateKey, cert: x509.Certificate) -> dict[str, bytes]:
    cert_pem = encode_certificate(cert)
    return secret_fields(cert_pem, cert_pem, encode_private_key(key))


def ensure_authority(
    store: ObjectStore,
    name: str,
    cn: str,
    *,
    namespace: str,
    owner: dict | None = None,
) -> bool:
    """Create the authority secret when absent. Returns True when one was created."""
    try:
        store.get("Secret", name, namespace)
        logger.info("authority_exists", name=name)
        return False
    except NotFoundError:
        pass

    key, cert = create_ca_certificate(cn)
    secret = new_object("Secret", name, namespace, type="Opaque", data=encode_data(_authority_fields(key, cert)))
    if owner is not None:
        secret["metadata"]["ownerReferences"] = [owner_reference(owner)]
    try:
        store.create(secret)
    except Exception:
        logger.exception("authority_create_failed", name=name)
        raise
    logger.info("authority_created", name=name, serial=hex(cert.serial_number))
    return True


def rotate_authority(store: ObjectStore, name: str, cn: str, *, namespace: str) -> bool:
    """
    Re-sign the authority certificate, keeping the stored key when it parses.

    All three fields are written in one update. A missing secret is skipped.
    """
    logger.info("authority_rotating", name=name)
    try:
        secret = store.get("Secret", name, namespace)
    except NotFoundError:
        logger.info("authority_missing_skip_rotate", name=name)
        return False

    key = decode_private_key(decode_data(secret).get(TLS_KEY_KEY))
    if key is None:
        logger.warning("authority_key_invalid_regenerating", name=name)
    key, cert = create_ca_certificate(cn, key)
    secret["data"] = encode_data(_authority_fields(key, cert))
    try:
        store.update(secret)
    except Exception:
        logger.exception("authority_update_failed", name=name)
        raise
    logger.info("authority_rotated", name=name, serial=hex(cert.serial_number))
    return True


def load_authority(
    store: ObjectStore,
    name: str,
    *,
    namespace: str,
) -> tuple[bytes, x509.Certificate, rsa.RSAPrivateKey]:
    """Return (certificate PEM, certificate, key) of an authority; absence is an error."""
    try:
        secret = store.get("Secret", name, namespace)
    except NotFoundError:
        logger.error("authority_not_found", name=name)
        raise AuthorityMissingError(name) from None
    data = decode_data(secret)
    cert_pem = data.get(TLS_CERT_KEY, b"")
    try:
        cert = decode_certificate(cert_pem)
    except ValueError as exc:
        logger.error("authority_certificate_invalid", name=name, error=str(exc))
        raise AuthorityInvalidError(name, f"unparsable {TLS_CERT_KEY}: {exc}") from exc
    key = decode_private_key(data.get(TLS_KEY_KEY))
    if key is None:
        logger.error("authority_key_invalid", name=name)
        raise AuthorityInvalidError(name, f"unparsable {TLS_KEY_KEY}")
    return cert_pem, cert, key
