# -*- coding: utf-8 -*-
"""SPF mechanism parsing and rendering"""

from __future__ import annotations

import ipaddress
import re
from enum import Enum
from typing import NamedTuple, Optional

from checkspf._constants import SYNTAX_ERROR_MARKER
from checkspf.network import split_prefix

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

MECHANISM_NAMES = (
    "all",
    "ip4",
    "ip6",
    "a",
    "mx",
    "ptr",
    "exists",
    "include",
    "redirect",
)

# Mechanisms that cost one DNS lookup each - RFC 7208 § 4.6.4
DNS_LOOKUP_MECHANISMS = ("a", "mx", "ptr", "exists", "include", "redirect")

# Mechanisms that can not fall back to the domain of the record
TARGET_REQUIRED_MECHANISMS = ("ip4", "ip6", "exists", "include", "redirect")

PREFIX_MECHANISMS = ("ip4", "ip6", "a", "mx")

PREFIX_REGEX = re.compile(r"^(0|[1-9][0-9]{0,2})$")

MACRO_LETTERS = set("slodiphcrtv")
MACRO_DELIMS = set(".-+,/_=")


class SPFResult(str, Enum):
    """The possible results of an SPF check - RFC 7208 § 2.6"""

    PASS = "pass"
    FAIL = "fail"
    SOFTFAIL = "softfail"
    NEUTRAL = "neutral"
    NONE = "none"
    TEMPERROR = "temperror"
    PERMERROR = "permerror"


QUALIFIERS: dict[str, SPFResult] = {
    "+": SPFResult.PASS,
    "-": SPFResult.FAIL,
    "~": SPFResult.SOFTFAIL,
    "?": SPFResult.NEUTRAL,
}

QUALIFIER_TAGS: dict[SPFResult, str] = {
    result: tag for tag, result in QUALIFIERS.items()
}


class SPFError(Exception):
    """Raised when a fatal SPF error occurs"""

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the output
        """
        self.data = data
        Exception.__init__(self, msg)


class SPFSyntaxError(SPFError):
    """Raised when an SPF syntax error is found"""


class SPFInvalidMechanism(SPFSyntaxError):
    """Raised when a term of an SPF record is not a valid mechanism"""

    def __init__(self, msg: str, term: str):
        self.term = term
        SPFSyntaxError.__init__(self, msg, data={"term": term})


class SPFMechanism(NamedTuple):
    """One parsed mechanism of an SPF record"""

    qualifier: SPFResult
    name: str
    domain: str
    prefix: str = ""
    default_domain: bool = False


def _raise_macro_syntax_error(
    value: str,
    pos: int,
    term: str,
    syntax_error_marker: str,
) -> None:
    """Raise SPFInvalidMechanism with a caret-like marker inside the bad value."""
    marked_value = value[:pos] + syntax_error_marker + value[pos:]
    raise SPFInvalidMechanism(
        f"Invalid SPF macro syntax at position {pos} "
        f"(marked with {syntax_error_marker}) in value: {marked_value}",
        term,
    )


def validate_spf_macros(
    value: str,
    term: str,
    syntax_error_marker: str = SYNTAX_ERROR_MARKER,
) -> None:
    """
    Validate SPF macro syntax in a domain-spec per RFC 7208 § 7.

    This is purely syntactic; no macro expansion or DNS lookups.
    """
    i = 0
    length = len(value)

    while i < length:
        if value[i] != "%":
            i += 1
            continue

        if i + 1 >= length:
            _raise_macro_syntax_error(value, i, term, syntax_error_marker)

        next_ch = value[i + 1]

        # Escapes: %%, %_, %-
        if next_ch in ("%", "_", "-"):
            i += 2
            continue

        if next_ch != "{":
            _raise_macro_syntax_error(value, i, term, syntax_error_marker)

        close = value.find("}", i + 2)
        if close == -1:
            _raise_macro_syntax_error(value, i, term, syntax_error_marker)

        body = value[i + 2 : close]
        if not body or body[0].lower() not in MACRO_LETTERS:
            _raise_macro_syntax_error(value, i + 2, term, syntax_error_marker)

        # transformers: *DIGIT [ "r" ]
        rest = body[1:]
        j = 0
        while j < len(rest) and rest[j].isdigit():
            j += 1
        if j and int(rest[:j]) == 0:
            _raise_macro_syntax_error(value, i + 3, term, syntax_error_marker)
        if j < len(rest) and rest[j].lower() == "r":
            j += 1

        for k, d in enumerate(rest[j:]):
            if d not in MACRO_DELIMS:
                _raise_macro_syntax_error(
                    value, i + 3 + j + k, term, syntax_error_marker
                )

        i = close + 1


def _validate_prefix(name: str, prefix: str, term: str) -> None:
    if prefix == "":
        return
    if name not in PREFIX_MECHANISMS:
        raise SPFInvalidMechanism(
            f"The {name} mechanism does not accept a prefix: {term}", term
        )
    if name == "ip4":
        limits = [(prefix, 32)]
    elif name == "ip6":
        limits = [(prefix, 128)]
    elif "//" not in prefix and not prefix.startswith("/"):
        limits = [(prefix, 32)]
    else:
        # dual-cidr-length - RFC 7208 § 5.6
        ip4_prefix, ip6_prefix = split_prefix(prefix)
        if ip6_prefix == "":
            raise SPFInvalidMechanism(f"Empty ip6 prefix length: {term}", term)
        limits = [(ip6_prefix, 128)]
        if ip4_prefix != "":
            limits.append((ip4_prefix, 32))
    for part, limit in limits:
        if not PREFIX_REGEX.match(part) or int(part) > limit:
            raise SPFInvalidMechanism(
                f"{prefix} is not a valid {name} prefix length: {term}", term
            )


def _validate_mechanism(mechanism: SPFMechanism, term: str) -> None:
    name = mechanism.name
    if name not in MECHANISM_NAMES:
        raise SPFInvalidMechanism(f"Unknown mechanism: {term}", term)
    if name in TARGET_REQUIRED_MECHANISMS and mechanism.default_domain:
        raise SPFInvalidMechanism(f"The {name} mechanism must have a value", term)
    if name == "all" and not mechanism.default_domain:
        raise SPFInvalidMechanism(
            f"The all mechanism does not accept a value: {term}", term
        )
    if name == "ip4":
        try:
            ipaddress.IPv4Address(mechanism.domain)
        except ValueError:
            raise SPFInvalidMechanism(
                f"{mechanism.domain} is not a valid ipv4 value.", term
            )
    elif name == "ip6":
        try:
            ipaddress.IPv6Address(mechanism.domain)
        except ValueError:
            raise SPFInvalidMechanism(
                f"{mechanism.domain} is not a valid ipv6 value.", term
            )
    elif not mechanism.default_domain:
        validate_spf_macros(mechanism.domain, term)
    _validate_prefix(name, mechanism.prefix, term)


def parse_mechanism(
    term: str,
    qualifier: SPFResult = SPFResult.PASS,
    default_domain: str = "",
) -> SPFMechanism:
    """
    Parses one term of an SPF record, without its qualifier

    The term is split at the first ``:`` (explicit target), ``/`` (prefix)
    or ``=`` (``redirect=domain``). Mechanisms that take no explicit target
    use ``default_domain``.

    Args:
        term (str): A term such as ``a:mail.example.com/24``
        qualifier (SPFResult): The result the mechanism yields when it matches
        default_domain (str): The domain of the record the term belongs to

    Returns:
        SPFMechanism: The parsed mechanism

    Raises:
        :exc:`checkspf.mechanism.SPFInvalidMechanism`
    """
    separators = [term.find(s) for s in ":/=" if s in term]
    pos = min(separators) if separators else -1
    name = term if pos == -1 else term[:pos]
    name = name.lower()
    separator = term[pos] if pos != -1 else ""
    rest = term[pos + 1 :]
    if name == "":
        raise SPFInvalidMechanism(f"Missing mechanism name: {term}", term)
    if separator != "" and rest == "":
        raise SPFInvalidMechanism(f"Empty value after {separator}: {term}", term)

    if separator == "=":
        mechanism = SPFMechanism(qualifier, name, rest)
    elif separator == ":":
        domain, slash, prefix = rest.partition("/")
        if domain == "" or (slash and prefix == ""):
            raise SPFInvalidMechanism(f"Empty value in mechanism: {term}", term)
        mechanism = SPFMechanism(qualifier, name, domain, prefix)
    elif separator == "/":
        mechanism = SPFMechanism(qualifier, name, default_domain, rest, True)
    else:
        mechanism = SPFMechanism(qualifier, name, default_domain, "", True)

    if separator == "=" and name != "redirect":
        raise SPFInvalidMechanism(f"Unknown modifier: {term}", term)
    _validate_mechanism(mechanism, term)

    return mechanism


def split_qualifier(term: str) -> tuple[SPFResult, str]:
    """Splits the optional qualifier character off the front of a term"""
    if term[:1] in QUALIFIERS:
        return QUALIFIERS[term[:1]], term[1:]
    return SPFResult.PASS, term


def mechanism_to_string(mechanism: SPFMechanism) -> str:
    """
    Renders a mechanism the way it is written in an SPF record

    The ``+`` qualifier is only written for ``all``, and defaulted targets
    are left out.
    """
    tag = QUALIFIER_TAGS.get(mechanism.qualifier, "+")
    if mechanism.name == "redirect":
        return f"redirect={mechanism.domain}"
    text = mechanism.name
    if mechanism.name == "all" or tag != "+":
        text = tag + text
    if mechanism.name != "all" and not mechanism.default_domain:
        text += f":{mechanism.domain}"
    if mechanism.prefix:
        text += f"/{mechanism.prefix}"
    return text
