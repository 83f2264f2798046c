"""Guards for user-controlled hosts and output paths."""

import ipaddress
import socket
from pathlib import Path
from urllib.parse import urlparse

from loguru import logger

from gowalker.errors import DocError, InvalidRemotePathError


def is_safe_url(url: str) -> bool:
    """
    Check if a discovery URL may be fetched (prevent SSRF).
    Blocks private IPs, loopback, link-local, and non-http schemes.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https"):
        logger.warning(f"Blocked unsafe scheme: {parsed.scheme}")
        return False

    hostname = parsed.hostname
    if not hostname:
        return False

    if hostname.lower() in ("localhost", "localhost.localdomain", "127.0.0.1", "::1"):
        logger.warning(f"Blocked localhost: {hostname}")
        return False

    try:
        results = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        # Unresolvable hosts cannot be reached either; the request fails later.
        return True

    for res in results:
        ip_str = str(res[4][0]).split("%")[0]
        try:
            ip = ipaddress.ip_address(ip_str)
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
        ):
            logger.warning(f"Blocked private/unsafe IP: {ip} for host {hostname}")
            return False

    return True


def safe_output_path(root: Path, relative: str, suffix: str = "") -> Path:
    """Join ``relative`` below ``root``, refusing anything that escapes it."""
    if not relative or relative.startswith("/") or "\\" in relative:
        raise InvalidRemotePathError(relative)
    if any(part in ("", ".", "..") for part in relative.split("/")):
        raise InvalidRemotePathError(relative)

    base = root.resolve()
    target = (base / (relative + suffix)).resolve()
    if not target.is_relative_to(base):
        raise DocError(f"output path escapes {base}: {relative}")
    return target
