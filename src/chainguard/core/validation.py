"""Input validation utilities.

Provides validation for:
- IPv4 addresses and CIDR blocks (list entries)
- Protocols accepted by the multiport match
- Multiport port specifications
- Custom chain names

All validators return the validated value or raise ValidationError.
"""

import ipaddress
import re

from chainguard.core.exceptions import ValidationError


# Dotted quad with optional prefix length; ranges are checked separately
IPV4_ENTRY_PATTERN = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})(?:/(\d{1,2}))?$", re.ASCII)

# Protocols the multiport match supports for this tool
SUPPORTED_PROTOCOLS: frozenset[str] = frozenset({"tcp", "udp"})

# Port limits
MIN_PORT = 1
MAX_PORT = 65535

# multiport holds at most 15 port slots per rule; an a:b range takes two
MAX_PORT_SLOTS = 15

# iptables chain names are limited to 28 characters
MAX_CHAIN_NAME_LENGTH = 28
CHAIN_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")
BUILTIN_CHAINS: frozenset[str] = frozenset({
    "INPUT", "OUTPUT", "FORWARD", "PREROUTING", "POSTROUTING",
})
RESERVED_TARGETS: frozenset[str] = frozenset({
    "ACCEPT", "DROP", "REJECT", "RETURN", "QUEUE", "LOG",
})


def validate_ipv4_entry(value: str) -> str:
    """Validate an IPv4 address with optional prefix length.

    Accepts ``10.0.0.1`` and ``10.0.0.0/8``. The string is returned
    stripped but otherwise unchanged (no host-bit normalisation).

    Args:
        value: Candidate address or CIDR

    Returns:
        The validated entry

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    match = IPV4_ENTRY_PATTERN.match(value)
    if not match:
        raise ValidationError(
            f"Invalid IP format: {value}",
            hint="Use a dotted-quad address like 192.168.1.10 or a CIDR like 10.0.0.0/8",
        )

    octets = match.groups()[:4]
    for octet in octets:
        if int(octet) > 255:
            raise ValidationError(
                f"Invalid IP format: {value}",
                details=[f"Octet out of range: {octet}"],
            )

    prefix = match.group(5)
    if prefix is not None and int(prefix) > 32:
        raise ValidationError(
            f"Invalid IP format: {value}",
            details=[f"Prefix length out of range: /{prefix}"],
        )
    if prefix is not None and prefix != str(int(prefix)):
        raise ValidationError(
            f"Invalid IP format: {value}",
            details=[f"Leading zero in prefix length: /{prefix}"],
        )

    # iptables reads leading-zero octets as octal, so 010 would mean 8
    try:
        ipaddress.IPv4Network(value, strict=False)
    except ValueError as e:
        raise ValidationError(
            f"Invalid IP format: {value}",
            details=[str(e)],
            hint="Write octets without leading zeros, e.g. 10.0.0.1",
        ) from e

    return value


def is_valid_ipv4_entry(value: str) -> bool:
    """Check an entry without raising."""
    try:
        validate_ipv4_entry(value)
        return True
    except ValidationError:
        return False


def validate_protocol(value: str) -> str:
    """Validate a protocol name.

    Args:
        value: Protocol string (case-insensitive)

    Returns:
        Lower-cased protocol

    Raises:
        ValidationError: If protocol is not tcp or udp
    """
    proto = value.strip().lower()
    if proto not in SUPPORTED_PROTOCOLS:
        raise ValidationError(
            f"Invalid protocol '{value}', must be tcp or udp",
            hint=f"Supported protocols: {', '.join(sorted(SUPPORTED_PROTOCOLS))}",
        )
    return proto


def _parse_port(token: str, spec: str) -> int:
    if not (token.isascii() and token.isdigit()):
        raise ValidationError(
            f"Invalid port specification: {spec}",
            details=[f"Not a port number: '{token}'"],
        )
    port = int(token)
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(
            f"Invalid port specification: {spec}",
            details=[f"Port out of range: {port}"],
            hint=f"Ports must be between {MIN_PORT} and {MAX_PORT}",
        )
    return port


def port_tokens(spec: str) -> list[str]:
    """Split a multiport specification into its comma-separated tokens."""
    return [t.strip() for t in spec.split(",")]


def validate_port_spec(spec: str) -> str:
    """Validate a multiport ``--dports`` specification.

    Supports single ports (``80``), comma lists (``80,443``) and ranges
    (``5900:5950``). A range fills two of the multiport slots.

    Args:
        spec: Port specification string

    Returns:
        The normalised specification (no whitespace, no leading zeros)

    Raises:
        ValidationError: If the spec is malformed or needs too many slots
    """
    spec = spec.strip()
    if not spec:
        raise ValidationError(
            "Port specification is empty",
            hint="Use e.g. '80,443' or '5900:5950'",
        )

    tokens = port_tokens(spec)

    # Normalised the way iptables prints them back, e.g. "080" -> "80"
    normalized: list[str] = []
    for token in tokens:
        if ":" in token:
            start_s, _, end_s = token.partition(":")
            start = _parse_port(start_s, spec)
            end = _parse_port(end_s, spec)
            if start > end:
                raise ValidationError(
                    f"Invalid port specification: {spec}",
                    details=[f"Range start greater than end: {token}"],
                )
            normalized.append(f"{start}:{end}")
        else:
            normalized.append(str(_parse_port(token, spec)))

    slots = sum(2 if ":" in token else 1 for token in normalized)
    if slots > MAX_PORT_SLOTS:
        raise ValidationError(
            f"Too many ports in specification: {slots} slots (max {MAX_PORT_SLOTS})",
            details=["Each a:b range uses two slots"],
            hint="Merge neighbouring ports into fewer, wider ranges",
        )

    return ",".join(normalized)


def validate_chain_name(name: str) -> str:
    """Validate a user-defined chain name.

    Args:
        name: Chain name

    Returns:
        The validated name

    Raises:
        ValidationError: If the name is unusable as a custom chain
    """
    if not name or len(name) > MAX_CHAIN_NAME_LENGTH:
        raise ValidationError(
            f"Invalid chain name: '{name}'",
            hint=f"Chain names must be 1-{MAX_CHAIN_NAME_LENGTH} characters",
        )

    if not CHAIN_NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid chain name: '{name}'",
            hint="Use letters, digits, '_', '-' and '.' only",
        )

    if name.upper() in BUILTIN_CHAINS or name.upper() in RESERVED_TARGETS:
        raise ValidationError(
            f"'{name}' is a built-in chain or target",
            hint="Pick a dedicated name such as CUSTOM_FIREWALL",
        )

    return name
