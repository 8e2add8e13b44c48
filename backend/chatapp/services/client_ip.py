from __future__ import annotations

import logging

import requests

logger = logging.getLogger(__name__)

LOOPBACK = {"127.0.0.1", "::1", "localhost"}


class ClientIpResolver:
    """
    Resolve the address recorded on a new session.

    Loopback clients are normalised to 127.0.0.1. Anything else goes through
    the public-IP lookup service; if that fails the remote address is kept.
    """

    def __init__(self, lookup_url: str | None, timeout: float = 3.0):
        self.lookup_url = lookup_url
        self.timeout = timeout

    def resolve(self, remote_addr: str | None, forwarded_for: str | None = None) -> str:
        client_ip = (forwarded_for or "").split(",")[0].strip() or remote_addr or "unknown"

        if client_ip in LOOPBACK:
            return "127.0.0.1"
        if not self.lookup_url:
            return client_ip

        try:
            resp = requests.get(self.lookup_url, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json().get("ip") or client_ip
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Public IP lookup failed, keeping %s: %s", client_ip, exc)
            return client_ip
