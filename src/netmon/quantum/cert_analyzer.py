"""Quantum-safety check of server certificates.

Pulls every PEM certificate out of ``openssl s_client -showcerts``
output, decodes the leaf with cryptography and decides whether its
signature or public key algorithm is post-quantum. Classical RSA/ECDSA
certificates always come out as not quantum safe.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from cryptography import x509
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(
    r'-----BEGIN CERTIFICATE-----\s*(?:.|\n)*?-----END CERTIFICATE-----',
    re.MULTILINE,
)

PQC_NAME_TOKENS = (
    "dilithium", "ml-dsa", "mldsa", "falcon", "sphincs", "slh-dsa", "slhdsa",
    "slhdsasha", "slhdsashake", "mayo", "cross", "snova", "ov_", "xmss", "hss",
    "lms", "picnic", "rainbow",
)

PQC_OID_PREFIXES = (
    "1.3.6.1.4.1.2.267",        # IBM / CRYSTALS experimental arc
    "1.3.9999.",                # OQS test arc
    "1.3.6.1.4.1.62245.",       # CROSS
    "2.16.840.1.101.3.4.3.",    # NIST sigAlgs (ML-DSA, SLH-DSA)
    "1.3.6.1.4.1.22554.",       # BouncyCastle PQC arc
    "1.3.6.1.4.1.42235.6",      # Falcon
)


@dataclass
class QuantumCertificateSummary:
    subject: str = ""
    issuer: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    signature_algorithm_name: str = ""
    signature_algorithm_oid: str = ""
    public_key_algorithm_name: str = ""
    public_key_algorithm_oid: str = ""
    is_quantum_safe_signature: bool = False
    is_quantum_safe_public_key: bool = False
    chain_length: int = 0

    @property
    def is_quantum_safe_certificate(self) -> bool:
        return self.is_quantum_safe_signature or self.is_quantum_safe_public_key

    def to_summary_string(self) -> str:
        expires = self.not_after.strftime("%Y-%m-%d") if self.not_after else "unknown"
        return (
            f"Certificate PQC: {'yes' if self.is_quantum_safe_certificate else 'no'} "
            f"(sig={str(self.is_quantum_safe_signature).lower()}, key={str(self.is_quantum_safe_public_key).lower()}); "
            f"SigAlg={self.signature_algorithm_name}; KeyAlg={self.public_key_algorithm_name}; "
            f"Expires={expires}; Subject={self.subject}; Issuer={self.issuer}; "
            f"ChainLength={self.chain_length}"
        )


def extract_pem_certificates(output: str) -> List[x509.Certificate]:
    """Decode every PEM certificate in the text, skipping malformed blocks."""
    certificates = []
    for match in _PEM_BLOCK.finditer(output or ""):
        try:
            certificates.append(x509.load_pem_x509_certificate(match.group(0).encode('ascii')))
        except (ValueError, UnicodeEncodeError) as e:
            logger.debug(f"Skipping malformed PEM block: {e}")
    return certificates


def is_quantum_safe_algorithm(name: str, oid: str, allowed_oids: Optional[Dict[str, str]] = None) -> bool:
    if allowed_oids and oid and oid in allowed_oids:
        return True
    lowered = (name or "").lower()
    if any(token in lowered for token in PQC_NAME_TOKENS):
        return True
    return bool(oid) and any(oid.startswith(prefix) for prefix in PQC_OID_PREFIXES)


def _resolve_name(oid: x509.ObjectIdentifier, allowed_oids: Optional[Dict[str, str]]) -> Tuple[str, str]:
    dotted = oid.dotted_string
    # cryptography keeps the friendly name on the private _name attribute
    name = getattr(oid, '_name', '') or ''
    if allowed_oids and dotted in allowed_oids and (not name or name == dotted or name.lower() in ("unknown", "unknown oid")):
        name = allowed_oids[dotted]
    return name or dotted, dotted


def _subject_name(cert: x509.Certificate) -> str:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        dns_names = san.get_values_for_type(x509.DNSName)
        if dns_names:
            return dns_names[0]
    except x509.ExtensionNotFound:
        pass
    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if common_names:
        return str(common_names[0].value)
    return cert.subject.rfc4514_string()


def build_summary(leaf: x509.Certificate, chain_length: int,
                  allowed_oids: Optional[Dict[str, str]] = None) -> QuantumCertificateSummary:
    sig_name, sig_oid = _resolve_name(leaf.signature_algorithm_oid, allowed_oids)
    key_name, key_oid = _resolve_name(leaf.public_key_algorithm_oid, allowed_oids)
    return QuantumCertificateSummary(
        subject=_subject_name(leaf),
        issuer=leaf.issuer.rfc4514_string(),
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
        signature_algorithm_name=sig_name,
        signature_algorithm_oid=sig_oid,
        public_key_algorithm_name=key_name,
        public_key_algorithm_oid=key_oid,
        is_quantum_safe_signature=is_quantum_safe_algorithm(sig_name, sig_oid, allowed_oids),
        is_quantum_safe_public_key=is_quantum_safe_algorithm(key_name, key_oid, allowed_oids),
        chain_length=chain_length,
    )


def try_build_summary(output: str,
                      allowed_oids: Optional[Dict[str, str]] = None) -> Tuple[bool, Optional[QuantumCertificateSummary]]:
    """Summarize the leaf certificate found in handshake output.

    Returns (False, None) when no certificate could be decoded.
    """
    certificates = extract_pem_certificates(output)
    if not certificates:
        return False, None
    summary = build_summary(certificates[0], len(certificates), allowed_oids)
    logger.debug(summary.to_summary_string())
    return True, summary
