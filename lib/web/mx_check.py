"""Mail-domain check via MX records.

A contact e-mail whose domain has no MX records cannot receive mail and is
dropped by the email hunt. Results are cached per domain for the process.
"""

import asyncio
from typing import Dict, List

import dns.exception
import dns.resolver
from loguru import logger


def get_mx_hosts(domain: str, timeout: float = 5.0) -> List[str]:
    """Blocking MX lookup. Empty list when the domain has none or DNS fails."""
    resolver = dns.resolver.Resolver()
    resolver.timeout = timeout
    resolver.lifetime = timeout * 2
    try:
        answers = resolver.resolve(domain, "MX")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
        return []
    except dns.exception.DNSException as e:
        logger.debug(f"MX lookup failed for {domain}: {e}")
        return []
    return [str(r.exchange).lower().rstrip(".") for r in answers]


class MxChecker:
    """Async, cached `has_mx(domain)` around the blocking resolver."""

    def __init__(self):
        self._cache: Dict[str, bool] = {}

    async def has_mx(self, domain: str) -> bool:
        domain = (domain or "").lower().strip()
        if not domain:
            return False
        if domain in self._cache:
            return self._cache[domain]
        loop = asyncio.get_running_loop()
        hosts = await loop.run_in_executor(None, get_mx_hosts, domain)
        self._cache[domain] = bool(hosts)
        if not hosts:
            logger.info(f"MX check: {domain} has no MX records")
        return self._cache[domain]
