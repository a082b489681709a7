# -*- coding: utf-8 -*-
"""IP network matching for SPF mechanisms"""

from __future__ import annotations

import ipaddress
import logging
from typing import Union
from collections.abc import Iterable, Sequence

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

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def split_prefix(prefix: str) -> tuple[str, str]:
    """
    Splits an SPF prefix into its IPv4 and IPv6 parts

    ``a`` and ``mx`` mechanisms may carry a dual prefix
    (``a/24//64``) as described in RFC 7208 § 5.6. A single prefix only
    applies to IPv4 addresses. The prefix is given without the leading
    ``/``, so ``a//64`` has the prefix ``/64``.

    Args:
        prefix (str): A prefix such as ``24``, ``24//64`` or ``/64``

    Returns:
        tuple: The IPv4 and IPv6 prefix; either may be an empty string
    """
    if "//" in prefix:
        ip4_prefix, ip6_prefix = prefix.split("//", 1)
        return ip4_prefix, ip6_prefix
    if prefix.startswith("/"):
        return "", prefix[1:]
    return prefix, ""


def build_network(address: str, prefix: str = "") -> IPNetwork:
    """
    Builds a network from an IP address and a prefix length

    An empty prefix means a host route: ``/32`` for IPv4 and ``/128`` for
    IPv6.

    Args:
        address (str): An IPv4 or IPv6 address
        prefix (str): A prefix length

    Returns:
        A :class:`ipaddress.IPv4Network` or :class:`ipaddress.IPv6Network`

    Raises:
        :exc:`ValueError`
    """
    ip = ipaddress.ip_address(address)
    if prefix == "":
        prefix = str(ip.max_prefixlen)
    if not prefix.isdigit():
        raise ValueError(f"{prefix} is not a valid prefix length")
    return ipaddress.ip_network(f"{ip}/{prefix}", strict=False)


def build_networks(addresses: Iterable[str], prefix: str = "") -> list[IPNetwork]:
    """
    Builds a network for each address, skipping any that are invalid

    Args:
        addresses (list): IPv4 and/or IPv6 addresses
        prefix (str): A prefix in the form used by ``a`` and ``mx``
                      mechanisms; see :func:`split_prefix`

    Returns:
        list: A list of networks
    """
    ip4_prefix, ip6_prefix = split_prefix(prefix)
    networks = []
    for address in addresses:
        family_prefix = ip6_prefix if ":" in address else ip4_prefix
        try:
            networks.append(build_network(address, family_prefix))
        except ValueError as e:
            logging.debug(f"Skipping {address}/{family_prefix}: {e}")
    return networks


def network_contains(network: IPNetwork, ip_address: IPAddress) -> bool:
    """
    Checks if an IP address is inside a network

    Addresses of the other IP version are never inside the network.
    """
    return ip_address in network


def any_network_contains(networks: Sequence[IPNetwork], ip_address: IPAddress) -> bool:
    """
    Checks if an IP address is inside at least one of the given networks

    Args:
        networks (list): Networks to check
        ip_address: The address to look for

    Returns:
        bool: ``False`` when ``networks`` is empty
    """
    for network in networks:
        if network_contains(network, ip_address):
            return True
    return False
