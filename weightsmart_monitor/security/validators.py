from __future__ import annotations

import ipaddress
import re

HOSTNAME_LABEL = re.compile(r"^(?!-)[a-zA-Z0-9-]{1,63}(?<!-)$")


def validate_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def validate_host(value: str) -> bool:
    if not value or len(value) > 253:
        return False
    if validate_ip(value):
        return True
    # Dotted quads that failed as an IP (e.g. 999.1.1.1) are not hostnames either.
    if re.fullmatch(r"[0-9.]+", value):
        return False
    return all(HOSTNAME_LABEL.fullmatch(label) for label in value.rstrip(".").split("."))


def validate_port(value: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value < 65536
