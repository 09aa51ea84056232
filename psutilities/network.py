"""
Public IP lookup.

Several plain-text "what is my IP" endpoints and an OpenDNS ``myip`` query
are probed in parallel and the first answer that parses as an IP address
wins; the other probes are left to finish on their own.  The winning
address is kept in a process-local cache for ``CACHE_TTL`` seconds.  The
cache is not thread-safe.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait

import dns.exception
import dns.resolver
import requests

from .errors import PublicIPError

logger = logging.getLogger(__name__)

IP_ENDPOINTS = [
    "https://api.ipify.org",
    "https://checkip.amazonaws.com",
    "https://icanhazip.com",
    "https://ifconfig.me/ip",
]

# resolver1/resolver2.opendns.com answer myip.opendns.com with the caller's address
DNS_NAME = "myip.opendns.com"
DNS_SERVERS = ["208.67.222.222", "208.67.220.220"]

CACHE_TTL = 300

_cache: dict = {"ip": None, "expires": 0.0}


def _probe(session, url, timeout):
    """Return the IP printed by *url*, or None if the answer is unusable."""
    try:
        response = session.get(url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        logger.debug("IP probe %s failed: %s", url, e)
        return None
    if response.status_code != 200:
        logger.debug("IP probe %s returned HTTP %s", url, response.status_code)
        return None
    text = (response.text or "").strip()
    try:
        return str(ipaddress.ip_address(text))
    except ValueError:
        logger.debug("IP probe %s returned non-IP text %r", url, text[:40])
        return None


def _dns_probe(nameservers, timeout):
    """Ask OpenDNS for our address; None if the query fails."""
    resolver = dns.resolver.Resolver(configure=False)
    resolver.nameservers = list(nameservers)
    try:
        answer = resolver.resolve(DNS_NAME, "A", lifetime=timeout)
    except dns.exception.DNSException as e:
        logger.debug("DNS IP probe via %s failed: %s", ", ".join(nameservers), e)
        return None
    for record in answer:
        try:
            return str(ipaddress.ip_address(record.address))
        except ValueError:
            continue
    return None


def clear_cache():
    _cache["ip"] = None
    _cache["expires"] = 0.0


def get_public_ip(timeout=5.0, force_refresh=False, endpoints=None, session=None,
                  dns_servers=None):
    """
    Return this machine's public IP address as a string.

    Args:
        timeout: Overall deadline (and per-probe timeout) in seconds.
        force_refresh: Ignore a cached address.
        endpoints: Override the probe URLs.
        session: Object with a requests-style ``get``; defaults to ``requests``.
        dns_servers: Resolvers for the DNS probe; defaults to OpenDNS.  Pass
            an empty list to skip the DNS probe.

    Raises:
        PublicIPError: if no probe produced an IP address before the deadline.
    """
    now = time.monotonic()
    if not force_refresh and _cache["ip"] and now < _cache["expires"]:
        return _cache["ip"]

    urls = list(endpoints or IP_ENDPOINTS)
    nameservers = DNS_SERVERS if dns_servers is None else list(dns_servers)
    session = session if session is not None else requests
    deadline = now + timeout

    workers = len(urls) + (1 if nameservers else 0)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ip-probe")
    try:
        pending = {executor.submit(_probe, session, url, timeout) for url in urls}
        if nameservers:
            pending.add(executor.submit(_dns_probe, nameservers, timeout))
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
            for future in done:
                ip = future.result()
                if ip:
                    _cache["ip"] = ip
                    _cache["expires"] = time.monotonic() + CACHE_TTL
                    logger.debug("Public IP resolved to %s", ip)
                    return ip
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    sources = f"{len(urls)} endpoint(s)" + (" and DNS" if nameservers else "")
    raise PublicIPError(f"No valid public IP returned by {sources} within {timeout}s")
