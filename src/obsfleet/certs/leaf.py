"""Leaf certificates signed by the server or client authority."""

from __future__ import annotations

import ipaddress
from datetime import datetime, timedelta, timezone

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

from obsfleet.certs.authority import (
    add_years,
    generate_key,
    load_authority,
    new_serial_number,
    subject_name,
)
from obsfleet.certs.pem import TLS_KEY_KEY, decode_private_key, encode_certificate, encode_private_key, secret_fields
from obsfleet.config import CLIENT_CA_CERTS, SERVER_CA_CERTS
from obsfleet.store.base import ObjectStore, decode_data, encode_data, new_object, owner_reference
from obsfleet.store.errors import NotFoundError

logger = structlog.get_logger("obsfleet.certs.leaf")

LEAF_YEARS = 1

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def authority_for(is_server: bool) -> str:
    return SERVER_CA_CERTS if is_server else CLIENT_CA_CERTS


def san_dns_names(cn: str, dns_names: list[str] | None) -> list[str]:
    """The common name always comes first; later copies of it and duplicates are dropped."""
    if dns_names is None:
        return [cn]
    names = [cn]
    for name in dns_names:
        if name and name not in names:
            names.append(name)
    return names


def create_leaf_certificate(
    is_server: bool,
    cn: str,
    ou: list[str] | None,
    dns_names: list[str] | None,
    ips: list[IPAddress] | None,
    ca_cert: x509.Certificate,
    ca_key: rsa.RSAPrivateKey,
    key: rsa.RSAPrivateKey | None = None,
) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    if key is None:
        key = generate_key()
    usage = ExtendedKeyUsageOID.SERVER_AUTH if is_server else ExtendedKeyUsageOID.CLIENT_AUTH
    alt_names: list[x509.GeneralName] = [x509.DNSName(name) for name in san_dns_names(cn, dns_names)]
    alt_names += [x509.IPAddress(ip) for ip in ips or []]
    not_before = datetime.now(timezone.utc) - timedelta(minutes=1)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject_name(cn, ou))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(new_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(add_years(not_before, LEAF_YEARS))
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False)
        .sign(private_key=ca_key, algorithm=hashes.SHA256())
    )
    return key, cert


def ensure_leaf(
    store: ObjectStore,
    name: str,
    is_server: bool,
    cn: str,
    ou: list[str] | None = None,
    dns_names: list[str] | None = None,
    ips: list[IPAddress] | None = None,
    *,
    namespace: str,
    owner: dict | None = None,
) -> bool:
    """Issue the leaf secret when absent. Returns True when one was created."""
    try:
        store.get("Secret", name, namespace)
        logger.info("leaf_exists", name=name)
        return False
    except NotFoundError:
        pass

    ca_pem, ca_cert, ca_key = load_authority(store, authority_for(is_server), namespace=namespace)
    key, cert = create_leaf_certificate(is_server, cn, ou, dns_names, ips, ca_cert, ca_key)
    secret = new_object(
        "Secret",
        name,
        namespace,
        type="Opaque",
        data=encode_data(secret_fields(ca_pem, encode_certificate(cert), encode_private_key(key))),
    )
    if owner is not None:
        secret["metadata"]["ownerReferences"] = [owner_reference(owner)]
    try:
        store.create(secret)
    except Exception:
        logger.exception("leaf_create_failed", name=name)
        raise
    logger.info("leaf_created", name=name, authority=authority_for(is_server))
    return True


def rotate_leaf(
    store: ObjectStore,
    name: str,
    is_server: bool,
    cn: str,
    ou: list[str] | None = None,
    dns_names: list[str] | None = None,
    ips: list[IPAddress] | None = None,
    *,
    namespace: str,
) -> bool:
    """
    Re-sign the leaf against the authority as currently stored.

    Rotate authorities first; a leaf rotated before its authority keeps
    chaining to the old authority certificate.
    """
    logger.info("leaf_rotating", name=name)
    try:
        secret = store.get("Secret", name, namespace)
    except NotFoundError:
        logger.info("leaf_missing_skip_rotate", name=name)
        return False

    ca_pem, ca_cert, ca_key = load_authority(store, authority_for(is_server), namespace=namespace)
    key = decode_private_key(decode_data(secret).get(TLS_KEY_KEY))
    if key is None:
        logger.warning("leaf_key_invalid_regenerating", name=name)
    key, cert = create_leaf_certificate(is_server, cn, ou, dns_names, ips, ca_cert, ca_key, key)
    secret["data"] = encode_data(secret_fields(ca_pem, encode_certificate(cert), encode_private_key(key)))
    try:
        store.update(secret)
    except Exception:
        logger.exception("leaf_update_failed", name=name)
        raise
    logger.info("leaf_rotated", name=name)
    return True
