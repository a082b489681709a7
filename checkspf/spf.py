# -*- coding: utf-8 -*-
"""Sender Policy framework (SPF) record parsing and evaluation"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import NamedTuple, Optional, TypedDict, Union
from collections.abc import Callable, Sequence

import dns.resolver
from dns.nameserver import Nameserver
import pyleri

from checkspf._constants import MAX_DNS_LOOKUPS, SPF_VERSION_TAG, SYNTAX_ERROR_MARKER
from checkspf.mechanism import (
    DNS_LOOKUP_MECHANISMS,
    SPFError,
    SPFInvalidMechanism,
    SPFMechanism,
    SPFResult,
    SPFSyntaxError,
    mechanism_to_string,
    parse_mechanism,
    split_qualifier,
    validate_spf_macros,
)
from checkspf.network import (
    IPAddress,
    any_network_contains,
    build_network,
    build_networks,
    network_contains,
)
from checkspf.utils import (
    DNSClient,
    DNSException,
    DNSExceptionNoAnswer,
    DNSExceptionNXDOMAIN,
    normalize_domain,
)

"""Copyright 2019-2025 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

SPF_VERSION_TAG_REGEX_STRING = r"v=spf1(?=\s|$)"
SPF_TERM_REGEX_STRING = r"\S+"

SPF_RECORD_REGEX = re.compile(r"^v=spf1(\s|$)")
MODIFIER_REGEX = re.compile(r"^([a-z][a-z0-9_.\-]*)=(.*)$", re.IGNORECASE)


class SPFRecordNotFound(SPFError):
    """Raised when an SPF record could not be found"""

    def __init__(self, error: Union[Exception, str], domain: str):
        self.error = error
        self.domain = domain
        SPFError.__init__(self, str(error), data={"domain": domain})

    def __str__(self):
        return str(self.error)


class SPFLookupFailed(SPFError):
    """Raised when the DNS query for an SPF record fails"""

    def __init__(self, error: Union[Exception, str], domain: str):
        self.error = error
        self.domain = domain
        SPFError.__init__(self, str(error), data={"domain": domain})

    def __str__(self):
        return str(self.error)


class MultipleSPFTXTRecords(SPFSyntaxError):
    """Raised when multiple TXT spf1 records are found"""


class SPFTooManyDNSLookups(SPFError):
    """Raised when an SPF record requires too many DNS lookups (10 max)"""

    def __init__(self, *args, **kwargs):
        data = {"dns_lookups": kwargs["dns_lookups"]}
        SPFError.__init__(self, args[0], data=data)


class SPFIncludeLoop(SPFError):
    """Raised when an SPF include loop is detected"""


class InvalidSender(SPFError):
    """Raised when a sender email address or IP address can not be checked"""


class _SPFGrammar(pyleri.Grammar):
    """
    Defines Pyleri grammar for SPF records

    The grammar only finds the version tag and the whitespace separated
    terms. Each term is validated by
    :func:`checkspf.mechanism.parse_mechanism` or as a modifier.
    """

    version_tag = pyleri.Regex(SPF_VERSION_TAG_REGEX_STRING)
    term = pyleri.Regex(SPF_TERM_REGEX_STRING)

    START = pyleri.Sequence(version_tag, pyleri.Repeat(term))


class SPFRecord(NamedTuple):
    """
    A parsed SPF record

    ``terms`` holds every mechanism and modifier in canonical form, in the
    order they appear in the record.
    """

    record: str
    domain: str
    version: str
    mechanisms: tuple[SPFMechanism, ...]
    modifiers: tuple[tuple[str, str], ...]
    dns_lookups: int
    terms: tuple[str, ...]


class SPFCheckResults(TypedDict, total=False):
    ip_address: str
    sender: str
    domain: Union[str, None]
    result: Union[str, None]
    record: Union[str, None]
    dns_lookups: Union[int, None]
    error: str


def query_spf_record(
    domain: str,
    *,
    dns_client: Optional[DNSClient] = None,
) -> str:
    """
    Queries DNS for an SPF record

    Args:
        domain (str): A domain name
        dns_client (DNSClient): The client to use for DNS queries

    Returns:
        str: The SPF record

    Raises:
        :exc:`checkspf.spf.SPFRecordNotFound`
        :exc:`checkspf.spf.SPFLookupFailed`
        :exc:`checkspf.spf.MultipleSPFTXTRecords`
    """
    domain = normalize_domain(domain)
    if dns_client is None:
        dns_client = DNSClient()
    logging.debug(f"Checking for a SPF record on {domain}")
    try:
        answers = dns_client.lookup_txt(domain)
    except DNSExceptionNXDOMAIN:
        raise SPFRecordNotFound("The domain does not exist.", domain)
    except DNSExceptionNoAnswer:
        raise SPFRecordNotFound("An SPF record does not exist.", domain)
    except DNSException as error:
        raise SPFLookupFailed(f"{domain}: {error}", domain)

    # https://datatracker.ietf.org/doc/html/rfc7208#section-4.5
    #
    # The version section is terminated by either an SP character or the end
    # of the record, so "v=spf10" does not match and is discarded.
    spf_records = [r for r in answers if SPF_RECORD_REGEX.match(r)]
    if len(spf_records) > 1:
        raise MultipleSPFTXTRecords(f"{domain}: The domain has multiple SPF TXT records")
    if len(spf_records) == 0:
        raise SPFRecordNotFound("An SPF record does not exist.", domain)

    return spf_records[0]


def _parse_modifier(
    name: str,
    value: str,
    term: str,
    modifiers: list[tuple[str, str]],
) -> None:
    name = name.lower()
    if name in map(lambda m: m[0], modifiers):
        raise SPFSyntaxError(f"Multiple {name} modifiers are not permitted")
    if name == "exp" and value == "":
        raise SPFInvalidMechanism("The exp modifier is missing a value", term)
    validate_spf_macros(value, term)
    modifiers.append((name, value))


def parse_spf_record(
    record: str,
    domain: str,
    *,
    dns_lookups: int = 0,
    syntax_error_marker: str = SYNTAX_ERROR_MARKER,
) -> SPFRecord:
    """
    Parses an SPF record

    No DNS queries are made. Every mechanism that will need a DNS lookup when
    the record is evaluated is counted on top of ``dns_lookups``.

    Args:
        record (str): An SPF record
        domain (str): The domain that the SPF record came from
        dns_lookups (int): DNS lookups already used by the records that led
                           to this one
        syntax_error_marker (str): The maker for pointing out syntax errors

    Returns:
        SPFRecord: The parsed record

    Raises:
        :exc:`checkspf.mechanism.SPFInvalidMechanism`
        :exc:`checkspf.spf.SPFIncludeLoop`
        :exc:`checkspf.mechanism.SPFSyntaxError`
        :exc:`checkspf.spf.SPFTooManyDNSLookups`
    """
    logging.debug(f"Parsing the SPF record on {domain}")
    domain = normalize_domain(domain)
    raw_record = record

    # Collapse RFC-style split TXT tokens, then remove remaining quotes
    record = re.sub(r'"\s+"', "", record).replace('"', "").strip()

    parsed_record = _SPFGrammar().parse(record)
    if not parsed_record.is_valid:
        pos = parsed_record.pos
        expecting: list[str] = list(
            map(lambda x: str(x).strip('"'), list(parsed_record.expecting))
        )
        expecting_str = " or ".join(expecting) or SPF_VERSION_TAG
        marked_record = record[:pos] + syntax_error_marker + record[pos:]
        raise SPFSyntaxError(
            f"{domain}: Expected {expecting_str} at position {pos} "
            f"(marked with {syntax_error_marker}) in: {marked_record}"
        )

    version_tag, *terms = record.split()
    mechanisms: list[SPFMechanism] = []
    modifiers: list[tuple[str, str]] = []
    rendered_terms: list[str] = []
    redirect_seen = False
    for term in terms:
        modifier = MODIFIER_REGEX.match(term)
        if modifier and modifier.group(1).lower() != "redirect":
            _parse_modifier(modifier.group(1), modifier.group(2), term, modifiers)
            rendered_terms.append("=".join(modifiers[-1]))
            continue
        qualifier, mechanism_term = split_qualifier(term)
        mechanism = parse_mechanism(mechanism_term, qualifier, domain)
        if mechanism.name == "redirect":
            if mechanism_term != term:
                raise SPFInvalidMechanism(
                    f"The redirect modifier does not accept a qualifier: {term}",
                    term,
                )
            if redirect_seen:
                raise SPFSyntaxError(f"{domain}: Multiple redirect modifiers")
            redirect_seen = True
        if mechanism.name == "include":
            if normalize_domain(mechanism.domain) == domain:
                raise SPFIncludeLoop(f"Include loop: {domain} -> {domain}")
        if mechanism.name in DNS_LOOKUP_MECHANISMS:
            dns_lookups += 1
        mechanisms.append(mechanism)
        rendered_terms.append(mechanism_to_string(mechanism))

    if dns_lookups >= MAX_DNS_LOOKUPS:
        raise SPFTooManyDNSLookups(
            "Parsing the SPF record requires "
            f"{dns_lookups}/{MAX_DNS_LOOKUPS} maximum DNS lookups "
            "(RFC 7208 § 4.6.4)",
            dns_lookups=dns_lookups,
        )

    return SPFRecord(
        record=raw_record,
        domain=domain,
        version=version_tag[2:],
        mechanisms=tuple(mechanisms),
        modifiers=tuple(modifiers),
        dns_lookups=dns_lookups,
        terms=tuple(rendered_terms),
    )


def get_spf_record(
    domain: str,
    *,
    record: Optional[str] = None,
    dns_lookups: int = 0,
    dns_client: Optional[DNSClient] = None,
) -> SPFRecord:
    """
    Retrieves and parses an SPF record

    Args:
        domain (str): A domain name
        record (str): An SPF record to use instead of querying DNS
        dns_lookups (int): DNS lookups already used
        dns_client (DNSClient): The client to use for DNS queries

    Returns:
        SPFRecord: The parsed record

    Raises:
        :exc:`checkspf.spf.SPFRecordNotFound`
        :exc:`checkspf.spf.SPFLookupFailed`
        :exc:`checkspf.spf.SPFIncludeLoop`
        :exc:`checkspf.mechanism.SPFSyntaxError`
        :exc:`checkspf.spf.SPFTooManyDNSLookups`
    """
    domain = normalize_domain(domain)
    if record is None:
        record = query_spf_record(domain, dns_client=dns_client)
    return parse_spf_record(record, domain, dns_lookups=dns_lookups)


def spf_record_to_string(spf_record: SPFRecord) -> str:
    """
    Renders a parsed SPF record the way it is written in a TXT record

    Args:
        spf_record (SPFRecord): A parsed SPF record

    Returns:
        str: The SPF record
    """
    return " ".join([f"v={spf_record.version}", *spf_record.terms])


def describe_spf_record(spf_record: SPFRecord) -> str:
    """Returns a human-readable, multi-line description of a parsed SPF record"""
    lines = [
        f"Raw: {spf_record.record}",
        f"Domain: {spf_record.domain}",
        f"Version: {spf_record.version}",
        f"DNS lookups: {spf_record.dns_lookups}",
        "Mechanisms:",
    ]
    for mechanism in spf_record.mechanisms:
        text = mechanism.name
        if mechanism.domain:
            text += f":{mechanism.domain}"
        if mechanism.prefix:
            text += f"/{mechanism.prefix}"
        lines.append(f"\t{text} - {mechanism.qualifier.value}")
    for name, value in spf_record.modifiers:
        lines.append(f"\t{name}={value}")
    return "\n".join(lines)


class _SPFEvaluation(object):
    """State shared by every record visited while checking one IP address"""

    def __init__(self, ip_address: IPAddress, dns_client: DNSClient, dns_lookups: int):
        self.ip_address = ip_address
        self.dns_client = dns_client
        self.dns_lookups = dns_lookups


def _match_all(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    return mechanism.qualifier


def _match_ip(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    try:
        network = build_network(mechanism.domain, mechanism.prefix)
    except ValueError as e:
        logging.debug(f"Invalid network {mechanism.domain}/{mechanism.prefix}: {e}")
        return None
    if network_contains(network, evaluation.ip_address):
        return mechanism.qualifier
    return None


def _match_a(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    try:
        addresses = evaluation.dns_client.lookup_addresses(mechanism.domain)
    except DNSException as e:
        logging.debug(f"a lookup for {mechanism.domain} failed: {e}")
        return None
    networks = build_networks(addresses, mechanism.prefix)
    if any_network_contains(networks, evaluation.ip_address):
        return mechanism.qualifier
    return None


def _match_mx(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    try:
        hostnames = evaluation.dns_client.lookup_mx(mechanism.domain)
    except DNSException as e:
        logging.debug(f"mx lookup for {mechanism.domain} failed: {e}")
        return None
    networks = []
    for hostname in hostnames:
        try:
            addresses = evaluation.dns_client.lookup_addresses(hostname)
        except DNSException as e:
            logging.debug(f"Address lookup for MX host {hostname} failed: {e}")
            continue
        networks += build_networks(addresses, mechanism.prefix)
    if any_network_contains(networks, evaluation.ip_address):
        return mechanism.qualifier
    return None


def _match_ptr(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    try:
        hostnames = evaluation.dns_client.lookup_reverse(str(evaluation.ip_address))
    except DNSException as e:
        logging.debug(f"PTR lookup for {evaluation.ip_address} failed: {e}")
        return None
    domain = mechanism.domain.lower()
    for hostname in hostnames:
        if hostname.lower().rstrip(".").endswith(domain):
            return mechanism.qualifier
    return None


def _match_exists(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    try:
        addresses = evaluation.dns_client.lookup_addresses(mechanism.domain)
    except DNSException as e:
        logging.debug(f"exists lookup for {mechanism.domain} failed: {e}")
        return None
    if len(addresses) > 0:
        return mechanism.qualifier
    return None


def _match_include(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    logging.debug(f"Following include:{mechanism.domain}")
    try:
        included = get_spf_record(
            mechanism.domain,
            dns_lookups=evaluation.dns_lookups,
            dns_client=evaluation.dns_client,
        )
    except (SPFRecordNotFound, SPFTooManyDNSLookups) as e:
        logging.debug(f"include:{mechanism.domain} is a permanent error: {e}")
        return SPFResult.PERMERROR
    except SPFError as e:
        logging.debug(f"Ignoring include:{mechanism.domain}: {e}")
        return None
    evaluation.dns_lookups = included.dns_lookups
    result = _evaluate_mechanisms(included, evaluation)
    # The included record's own pass or permerror decides the match
    if result in (SPFResult.PASS, SPFResult.PERMERROR):
        return result
    return None


def _match_redirect(mechanism: SPFMechanism, evaluation: _SPFEvaluation):
    logging.debug(f"Following redirect={mechanism.domain}")
    try:
        target = get_spf_record(
            mechanism.domain,
            dns_lookups=evaluation.dns_lookups,
            dns_client=evaluation.dns_client,
        )
    except SPFLookupFailed as e:
        logging.debug(f"redirect={mechanism.domain} is a temporary error: {e}")
        return SPFResult.TEMPERROR
    except SPFError as e:
        logging.debug(f"redirect={mechanism.domain} is a permanent error: {e}")
        return SPFResult.PERMERROR
    evaluation.dns_lookups = target.dns_lookups
    return _evaluate_mechanisms(target, evaluation)


_MECHANISM_MATCHERS: dict[
    str, Callable[[SPFMechanism, _SPFEvaluation], Optional[SPFResult]]
] = {
    "all": _match_all,
    "ip4": _match_ip,
    "ip6": _match_ip,
    "a": _match_a,
    "mx": _match_mx,
    "ptr": _match_ptr,
    "exists": _match_exists,
    "include": _match_include,
    "redirect": _match_redirect,
}


def _evaluate_mechanisms(spf_record: SPFRecord, evaluation: _SPFEvaluation) -> SPFResult:
    for mechanism in spf_record.mechanisms:
        if mechanism.name in DNS_LOOKUP_MECHANISMS and "%" in mechanism.domain:
            logging.debug(
                f"{spf_record.domain}: skipping {mechanism_to_string(mechanism)}, "
                "SPF macros are not expanded"
            )
            continue
        result = _MECHANISM_MATCHERS[mechanism.name](mechanism, evaluation)
        if result is not None:
            logging.debug(
                f"{spf_record.domain}: {mechanism_to_string(mechanism)} "
                f"matched {evaluation.ip_address}: {result.value}"
            )
            return result
    return SPFResult.NEUTRAL


def evaluate_spf_record(
    spf_record: SPFRecord,
    ip_address: Union[str, IPAddress],
    *,
    dns_client: Optional[DNSClient] = None,
) -> SPFResult:
    """
    Checks if an IP address is allowed to send email by a parsed SPF record

    Mechanisms are checked in order, and the first one that matches decides
    the result. ``include`` and ``redirect`` targets are fetched, parsed and
    checked as they are reached, sharing one DNS lookup budget with the
    record that led to them.

    Args:
        spf_record (SPFRecord): A parsed SPF record
        ip_address: The IPv4 or IPv6 address of the sending host
        dns_client (DNSClient): The client to use for DNS queries

    Returns:
        SPFResult: The result; ``neutral`` when no mechanism matches

    Raises:
        :exc:`ValueError` if ``ip_address`` is not an IP address
    """
    ip_address = ipaddress.ip_address(ip_address)
    if ip_address.version == 6 and ip_address.ipv4_mapped:
        ip_address = ip_address.ipv4_mapped
    if dns_client is None:
        dns_client = DNSClient()
    evaluation = _SPFEvaluation(ip_address, dns_client, spf_record.dns_lookups)
    return _evaluate_mechanisms(spf_record, evaluation)


def _check_sender(
    ip_address: str,
    sender: str,
    record: Optional[str],
    dns_client: DNSClient,
) -> tuple[SPFResult, Optional[SPFError], Optional[SPFRecord]]:
    if "@" not in sender:
        raise InvalidSender(f"{sender}: Email address must contain an @ sign.")
    domain = normalize_domain(sender.rsplit("@", 1)[1].strip())
    if domain == "":
        raise InvalidSender(f"{sender}: Email address must contain a domain.")
    try:
        ipaddress.ip_address(ip_address)
    except ValueError:
        raise InvalidSender(f"{ip_address} is not a valid IP address.")

    try:
        spf_record = get_spf_record(domain, record=record, dns_client=dns_client)
    except SPFLookupFailed as error:
        return SPFResult.TEMPERROR, error, None
    except SPFRecordNotFound:
        return SPFResult.NONE, None, None
    except SPFError as error:
        return SPFResult.PERMERROR, error, None

    result = evaluate_spf_record(spf_record, ip_address, dns_client=dns_client)
    return result, None, spf_record


def check_sender(
    ip_address: str,
    sender: str,
    *,
    record: Optional[str] = None,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
    dns_client: Optional[DNSClient] = None,
) -> tuple[SPFResult, Optional[SPFError]]:
    """
    Checks if an IP address is allowed to send email for an email address

    Args:
        ip_address (str): The IPv4 or IPv6 address of the sending host
        sender (str): The sender email address
        record (str): An SPF record to use instead of querying DNS
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        dns_client (DNSClient): The client to use for DNS queries; overrides
                                the other DNS options

    Returns:
        tuple: The :class:`checkspf.mechanism.SPFResult`, and the
        :exc:`checkspf.mechanism.SPFError` that explains a ``temperror`` or
        ``permerror`` result (otherwise ``None``)

    Raises:
        :exc:`checkspf.spf.InvalidSender`
    """
    if dns_client is None:
        dns_client = DNSClient(
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    result, error, _ = _check_sender(ip_address, sender, record, dns_client)
    return result, error


def check_spf(
    ip_address: str,
    sender: str,
    *,
    record: Optional[str] = None,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
    dns_client: Optional[DNSClient] = None,
) -> SPFCheckResults:
    """
    Returns a dictionary with the SPF result for a sender, or an error.

    Args:
        ip_address (str): The IPv4 or IPv6 address of the sending host
        sender (str): The sender email address
        record (str): An SPF record to use instead of querying DNS
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        dns_client (DNSClient): The client to use for DNS queries

    Returns:
        dict: A ``dict`` with the following keys:
            - ``ip_address`` - The IP address that was checked
            - ``sender`` - The sender email address
            - ``domain`` - The domain of the sender
            - ``result`` - The SPF result
            - ``record`` - The SPF record, or ``None`` if it could not be parsed
            - ``dns_lookups`` - The DNS lookups needed by the record itself

        If an error explains the result, the dictionary will also have an
        ``error`` key with the error message.
    """
    if dns_client is None:
        dns_client = DNSClient(
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    results: SPFCheckResults = {
        "ip_address": ip_address,
        "sender": sender,
        "domain": None,
        "result": None,
        "record": None,
        "dns_lookups": None,
    }
    if "@" in sender:
        results["domain"] = normalize_domain(sender.rsplit("@", 1)[1].strip())
    try:
        result, error, spf_record = _check_sender(
            ip_address, sender, record, dns_client
        )
    except InvalidSender as error:
        results["error"] = str(error.args[0])
        return results

    results["result"] = result.value
    if spf_record is not None:
        results["record"] = spf_record_to_string(spf_record)
        results["dns_lookups"] = spf_record.dns_lookups
    if error is not None:
        results["error"] = str(error)

    return results
