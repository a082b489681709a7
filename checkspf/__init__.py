# -*- coding: utf-8 -*-

"""Checks if hosts are allowed to send email for a domain using SPF"""

from __future__ import annotations

import json
import logging
from csv import DictWriter
from io import StringIO
from time import sleep
from typing import Optional, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

import checkspf._constants
from checkspf.mechanism import (
    SPFError,
    SPFInvalidMechanism,
    SPFMechanism,
    SPFResult,
    SPFSyntaxError,
    mechanism_to_string,
    parse_mechanism,
)
from checkspf.spf import (
    InvalidSender,
    MultipleSPFTXTRecords,
    SPFCheckResults,
    SPFIncludeLoop,
    SPFLookupFailed,
    SPFRecord,
    SPFRecordNotFound,
    SPFTooManyDNSLookups,
    check_sender,
    check_spf,
    describe_spf_record,
    evaluate_spf_record,
    get_spf_record,
    parse_spf_record,
    query_spf_record,
    spf_record_to_string,
)
from checkspf.utils import DNSClient

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


__version__ = checkspf._constants.__version__

__all__ = [
    "DNSClient",
    "InvalidSender",
    "MultipleSPFTXTRecords",
    "SPFError",
    "SPFIncludeLoop",
    "SPFInvalidMechanism",
    "SPFLookupFailed",
    "SPFMechanism",
    "SPFRecord",
    "SPFRecordNotFound",
    "SPFResult",
    "SPFSyntaxError",
    "SPFTooManyDNSLookups",
    "check_sender",
    "check_senders",
    "check_spf",
    "describe_spf_record",
    "evaluate_spf_record",
    "get_spf_record",
    "mechanism_to_string",
    "output_to_file",
    "parse_mechanism",
    "parse_spf_record",
    "query_spf_record",
    "results_to_csv",
    "results_to_csv_rows",
    "results_to_json",
    "spf_record_to_string",
]


def check_senders(
    ip_address: str,
    senders: list[str],
    *,
    record: Optional[str] = None,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
    wait: float = 0.0,
    dns_client: Optional[DNSClient] = None,
) -> Union[SPFCheckResults, list[SPFCheckResults]]:
    """
    Check if an IP address is allowed to send email for each of the given
    sender email addresses

    Args:
        ip_address (str): The IPv4 or IPv6 address of the sending host
        senders (list): A list of sender email addresses
        record (str): An SPF record to use for every sender instead of
                      querying DNS
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        wait (float): number of seconds to wait between processing senders
        dns_client (DNSClient): The client to use for DNS queries

    Returns:
       A ``dict`` or ``list`` of ``dict`` as returned by
       :func:`checkspf.spf.check_spf`
    """
    senders = sorted(
        list(
            set(
                map(
                    lambda s: s.strip().rstrip(".\r\n").split(",")[0],
                    senders,
                )
            )
        )
    )
    while "" in senders:
        senders.remove("")
    if dns_client is None:
        dns_client = DNSClient(
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    results = []
    for sender in senders:
        logging.debug(f"Checking: {sender} from {ip_address}")
        results.append(
            check_spf(ip_address, sender, record=record, dns_client=dns_client)
        )
        if wait > 0.0:
            logging.debug(f"Sleeping for {wait} seconds")
            sleep(wait)
    if len(results) == 1:
        results = results[0]

    return results


def results_to_json(
    results: Union[SPFCheckResults, list[SPFCheckResults]],
) -> str:
    """
    Converts a dictionary of results or list of results to a JSON string

    Args:
        results (dict): A dictionary of results

    Returns:
        str: Results in JSON format
    """
    return json.dumps(results, ensure_ascii=False, indent=2)


def results_to_csv_rows(
    results: Union[SPFCheckResults, list[SPFCheckResults]],
) -> list[dict]:
    """
    Converts a results dictionary or list of dictionaries and returns a
    list of CSV row dictionaries

    Args:
        results (dict): A dictionary of results

    Returns:
        list: A list of CSV row dictionaries
    """
    rows = []

    if type(results) is dict:
        results = [results]

    for result in results:
        row = {}
        row["ip_address"] = result["ip_address"]
        row["sender"] = result["sender"]
        row["domain"] = result["domain"]
        row["result"] = result["result"]
        row["record"] = result["record"]
        row["dns_lookups"] = result["dns_lookups"]
        if "error" in result:
            row["error"] = result["error"]
        rows.append(row)
    return rows


def results_to_csv(results: Union[SPFCheckResults, list[SPFCheckResults]]) -> str:
    """
    Converts a dictionary of results to CSV

    Args:
        results (dict): A dictionary of results

    Returns:
        str: A CSV of results
    """
    fields = [
        "ip_address",
        "sender",
        "domain",
        "result",
        "record",
        "dns_lookups",
        "error",
    ]
    output = StringIO(newline="\n")
    writer = DictWriter(output, fieldnames=fields)
    writer.writeheader()
    rows = results_to_csv_rows(results)
    writer.writerows(rows)
    output.flush()

    return output.getvalue()


def output_to_file(path: str, content: str):
    """
    Write given content to the given path

    Args:
        path (str): A file path
        content (str): JSON or CSV text
    """
    with open(
        path, "w", newline="\n", encoding="utf-8", errors="ignore"
    ) as output_file:
        output_file.write(content)
