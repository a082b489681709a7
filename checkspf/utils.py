# -*- coding: utf-8 -*-
"""DNS utility functions"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Optional
from collections.abc import Sequence

import dns.exception
import dns.resolver
import dns.reversename
from dns.nameserver import Nameserver
from expiringdict import ExpiringDict

from checkspf._constants import DNS_CACHE_MAX_AGE_SECONDS, DNS_CACHE_MAX_LEN

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

DNS_CACHE = ExpiringDict(
    max_len=DNS_CACHE_MAX_LEN, max_age_seconds=DNS_CACHE_MAX_AGE_SECONDS
)

ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")  # includes ZWSP, ZWNJ, ZWJ, BOM


class DNSException(Exception):
    """Raised when a general DNS error occurs"""

    def __init__(self, error):
        if isinstance(error, dns.exception.Timeout):
            error.kwargs["timeout"] = round(error.kwargs["timeout"], 1)
        Exception.__init__(self, error)


class DNSExceptionNXDOMAIN(DNSException):
    """Raised when a NXDOMAIN DNS error (RCODE:3) occurs"""


class DNSExceptionNoAnswer(DNSException):
    """Raised when a name exists but has no records of the requested type"""


def normalize_domain(domain: str) -> str:
    """
    Normalize an input domain by removing zero-width characters and lowering it

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: A normalized domain
    """
    domain = unicodedata.normalize("NFC", domain)
    domain = ZERO_WIDTH_RE.sub("", domain)
    return domain.lower().rstrip(".")


def query_dns(
    domain: str,
    record_type: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
    _attempt: int = 0,
    cache: Optional[ExpiringDict] = None,
) -> list[str]:
    """
    Queries DNS

    Args:
        domain (str): The domain or subdomain to query about
        record_type (str): The record type to query for
        nameservers (list): A list of one or more nameservers to use
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): Sets the DNS timeout in seconds
        timeout_retries (int): The number of times to reattempt a query after a timeout
        cache (ExpiringDict): Cache storage

    Returns:
        list: A list of answers

    Raises:
        :exc:`dns.exception.DNSException`
    """
    domain = normalize_domain(domain)
    record_type = record_type.upper()
    cache_key = f"{domain}_{record_type}"
    if cache is None:
        cache = DNS_CACHE
    if isinstance(cache, ExpiringDict):
        records = cache.get(cache_key)
        if isinstance(records, list):
            return records
    if not resolver:
        resolver = dns.resolver.Resolver()
        timeout = float(timeout)
        if nameservers is not None:
            resolver.nameservers = nameservers
        resolver.timeout = timeout
        resolver.lifetime = timeout
    try:
        answers = resolver.resolve(domain, record_type, lifetime=timeout)
    except dns.resolver.LifetimeTimeout as e:
        _attempt += 1
        if _attempt > timeout_retries:
            raise e
        return query_dns(
            domain,
            record_type,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            _attempt=_attempt,
            cache=cache,
        )
    if record_type == "TXT":
        # Join each sequence of byte chunks into a single bytes object
        resource_records = [b"".join(r.strings) for r in answers if r.strings]
        records = []
        for r in resource_records:
            try:
                records.append(r.decode())
            except UnicodeDecodeError:
                logging.debug(f"Skipping an undecodable TXT record on {domain}")
    else:
        records = list(
            map(
                lambda r: r.to_text().rstrip("."),
                answers,
            )
        )
    if isinstance(cache, ExpiringDict):
        cache[cache_key] = records

    return records


class DNSClient(object):
    """
    Performs the DNS lookups needed to evaluate SPF records

    Every method raises :exc:`checkspf.utils.DNSException` (or one of its
    subclasses) when a lookup fails, so callers never have to handle
    dnspython exceptions directly. Subclass it to serve answers from
    somewhere other than DNS.
    """

    def __init__(
        self,
        *,
        nameservers: Optional[Sequence[str | Nameserver]] = None,
        resolver: Optional[dns.resolver.Resolver] = None,
        timeout: float = 2.0,
        timeout_retries: int = 2,
    ):
        """
        Args:
            nameservers (list): A list of nameservers to query
            resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                              requests
            timeout (float): number of seconds to wait for an answer from DNS
            timeout_retries (int): The number of times to reattempt a query
                                   after a timeout
        """
        self.nameservers = nameservers
        self.resolver = resolver
        self.timeout = timeout
        self.timeout_retries = timeout_retries

    def _query(self, domain: str, record_type: str) -> list[str]:
        return query_dns(
            domain,
            record_type,
            nameservers=self.nameservers,
            resolver=self.resolver,
            timeout=self.timeout,
            timeout_retries=self.timeout_retries,
        )

    def lookup_txt(self, domain: str) -> list[str]:
        """
        Queries DNS for TXT records

        Args:
            domain (str): A domain name

        Returns:
            list: A list of TXT records

        Raises:
            :exc:`checkspf.utils.DNSExceptionNXDOMAIN`
            :exc:`checkspf.utils.DNSExceptionNoAnswer`
            :exc:`checkspf.utils.DNSException`
        """
        try:
            logging.debug(f"Getting TXT records for {domain}")
            return self._query(domain, "TXT")
        except dns.resolver.NXDOMAIN:
            raise DNSExceptionNXDOMAIN("The domain does not exist.")
        except dns.resolver.NoAnswer:
            raise DNSExceptionNoAnswer(
                f"The domain {domain} does not have any TXT records."
            )
        except Exception as error:
            raise DNSException(error)

    def lookup_addresses(self, hostname: str) -> list[str]:
        """
        Queries DNS for A and AAAA records

        Args:
            hostname (str): A hostname

        Returns:
            list: A sorted list of IPv4 and IPv6 addresses

        Raises:
            :exc:`checkspf.utils.DNSExceptionNXDOMAIN`
            :exc:`checkspf.utils.DNSException`
        """
        addresses = []
        for qt in ["A", "AAAA"]:
            try:
                logging.debug(f"Getting {qt} records for {hostname}")
                addresses += self._query(hostname, qt)
            except dns.resolver.NXDOMAIN:
                raise DNSExceptionNXDOMAIN("The domain does not exist.")
            except dns.resolver.NoAnswer:
                # Sometimes a domain will only have A or AAAA records, but not both
                pass
            except Exception as error:
                raise DNSException(error)

        return sorted(addresses)

    def lookup_mx(self, domain: str) -> list[str]:
        """
        Queries DNS for the hostnames of a domain's Mail Exchange hosts

        Args:
            domain (str): A domain name

        Returns:
            list: MX hostnames, ordered by preference

        Raises:
            :exc:`checkspf.utils.DNSExceptionNXDOMAIN`
            :exc:`checkspf.utils.DNSException`
        """
        hosts = []
        try:
            logging.debug(f"Checking for MX records on {domain}")
            answers = self._query(domain, "MX")
            for record in answers:
                record = record.split(" ")
                hostname = record[1].rstrip(".").strip().lower()
                if hostname == "":
                    logging.debug('"No Service" MX record found')
                    continue
                hosts.append((int(record[0]), hostname))
        except dns.resolver.NXDOMAIN:
            raise DNSExceptionNXDOMAIN("The domain does not exist.")
        except dns.resolver.NoAnswer:
            pass
        except Exception as error:
            raise DNSException(error)

        return [hostname for _, hostname in sorted(hosts)]

    def lookup_reverse(self, ip_address: str) -> list[str]:
        """
        Queries for an IP addresses reverse DNS hostname(s)

        Args:
            ip_address (str): An IPv4 or IPv6 address

        Returns:
            list: A list of reverse DNS hostnames

        Raises:
            :exc:`checkspf.utils.DNSException`
        """
        try:
            name = str(dns.reversename.from_address(ip_address))
            logging.debug(f"Getting PTR records for {ip_address}")
            hostnames = self._query(name, "PTR")
        except dns.resolver.NXDOMAIN:
            return []
        except Exception as error:
            raise DNSException(error)

        return hostnames
