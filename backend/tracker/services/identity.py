"""
Identity Resolution

Two deduplication signals per caller:
1. Client token - UUID v4 held in a long-lived cookie, issued on first contact.
2. Network hash - salted one-way digest of the caller's address. The raw
   address is never stored or logged.

Address extraction walks proxy headers most-specific first and falls back to
the transport peer. An address that does not parse fails closed.
"""
import hashlib
import ipaddress
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from ..errors import NetworkIdentityError

logger = logging.getLogger(__name__)


# =============================================================================
# CLIENT TOKEN
# =============================================================================

COOKIE_NAME = "tracker_user_id"
COOKIE_MAX_AGE = 2 * 365 * 24 * 60 * 60  # two years

UUID_V4_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def generate_client_token() -> str:
    return str(uuid.uuid4())


def validate_client_token(token: Optional[str]) -> bool:
    if not token or not isinstance(token, str):
        return False
    return bool(UUID_V4_REGEX.match(token.strip()))


def resolve_client_token(presented: Optional[str]) -> Tuple[str, bool]:
    """
    Return (token, is_new). A missing or malformed token is replaced by a
    freshly generated one.
    """
    if validate_client_token(presented):
        return presented.strip().lower(), False
    return generate_client_token(), True


def token_prefix(token: Optional[str]) -> str:
    """First 8 characters, the only part of a token or hash that is logged."""
    return (token or "")[:8]


# =============================================================================
# NETWORK ADDRESS
# =============================================================================

# Most specific first.
ADDRESS_HEADERS = (
    "cf-connecting-ip",
    "true-client-ip",
    "x-forwarded-for",
    "x-real-ip",
)


def validate_ip_address(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        ipaddress.ip_address(value.strip())
    except ValueError:
        return False
    return True


def extract_client_address(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Pick the originating address from proxy headers, then the peer.

    X-Forwarded-For may list a chain; its first entry is the client.
    A value that is not an IP address is skipped in favour of the next
    source. Returns an empty string when no source parses.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    for header in ADDRESS_HEADERS:
        raw = lowered.get(header)
        if not raw:
            continue
        if header == "x-forwarded-for":
            raw = raw.split(",")[0]
        candidate = raw.strip()
        if validate_ip_address(candidate):
            return candidate
        logger.debug(f"Ignoring unparseable {header} value")
    candidate = (peer or "").strip()
    return candidate if validate_ip_address(candidate) else ""


# =============================================================================
# NETWORK HASH
# =============================================================================

PREFERRED_ALGORITHM = "blake2b-256"
FALLBACK_ALGORITHM = "sha256"


def _select_algorithm() -> str:
    """Pick the digest once per process; the fallback is a named degraded mode."""
    if "blake2b" in hashlib.algorithms_available:
        return PREFERRED_ALGORITHM
    logger.warning("BLAKE2b unavailable, network hashing degraded to SHA-256")
    return FALLBACK_ALGORITHM


@dataclass(frozen=True)
class HashAlgorithmState:
    name: str

    @property
    def degraded(self) -> bool:
        return self.name != PREFERRED_ALGORITHM


class NetworkHasher:
    """
    Salted one-way hashing of network addresses.

    The digest input is `<version>:<salt>` followed by the canonical address,
    so rotating to a new salt version changes every hash while hashes within
    one version stay comparable.
    """

    def __init__(self, salt: str, salt_version: str = "v1", algorithm: Optional[str] = None):
        if not salt or not salt.strip():
            raise ValueError("Salt cannot be empty")
        self.salt = salt
        self.salt_version = salt_version
        self.algorithm = HashAlgorithmState(algorithm or _select_algorithm())

    def _digest(self, data: bytes) -> str:
        if self.algorithm.name == PREFERRED_ALGORITHM:
            return hashlib.blake2b(data, digest_size=32).hexdigest()
        return hashlib.sha256(data).hexdigest()

    def hash_address(self, address: str) -> str:
        """
        Hash an IPv4/IPv6 address into 64 lowercase hex characters.

        Raises NetworkIdentityError when the address does not parse.
        """
        if not validate_ip_address(address):
            raise NetworkIdentityError("Unable to determine your network address.")
        canonical = str(ipaddress.ip_address(address.strip()))
        material = f"{self.salt_version}:{self.salt}{canonical}".encode("utf-8")
        return self._digest(material)

    def hash_request(self, headers: Mapping[str, str], peer: Optional[str] = None) -> str:
        address = extract_client_address(headers, peer)
        if not address:
            logger.debug("No parseable client address on request")
            raise NetworkIdentityError("Unable to determine your network address.")
        return self.hash_address(address)
