#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Checks if a host is allowed to send email for one or more senders using SPF"""

from __future__ import annotations

import os
from argparse import ArgumentParser

import logging

from checkspf import (
    __version__,
    check_senders,
    results_to_json,
    results_to_csv,
    output_to_file,
)

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


def _main():
    """Called when the module in executed"""
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument(
        "ip_address", help="the IPv4 or IPv6 address of the sending host"
    )
    arg_parser.add_argument(
        "sender",
        nargs="+",
        help="one or more sender email addresses, or a single path to a "
        "file containing a list of sender email addresses",
    )
    arg_parser.add_argument(
        "-r",
        "--record",
        help="an SPF record to check instead of querying DNS for one",
    )
    arg_parser.add_argument(
        "-f",
        "--format",
        default="json",
        help="specify JSON or CSV screen output format",
    )
    arg_parser.add_argument(
        "-o",
        "--output",
        nargs="+",
        help="one or more file paths to output to "
        "(must end in .json or .csv) "
        "(silences screen output)",
    )
    arg_parser.add_argument(
        "-n", "--nameserver", nargs="+", help="nameservers to query"
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for an answer from DNS (default 2.0)",
        type=float,
        default=2.0,
    )
    arg_parser.add_argument(
        "--timeout-retries",
        help="number of times to reattempt a query after a timeout (default 2)",
        type=int,
        default=2,
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    arg_parser.add_argument(
        "-w",
        "--wait",
        type=float,
        help="number of seconds to wait between checking senders (default 0.0)",
        default=0.0,
    )
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )

    args = arg_parser.parse_args()

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")
    senders = args.sender
    if len(senders) == 1 and os.path.exists(senders[0]):
        with open(senders[0]) as senders_file:
            senders = [
                line.strip() for line in senders_file.readlines() if "@" in line
            ]

    results = check_senders(
        args.ip_address,
        senders,
        record=args.record,
        nameservers=args.nameserver,
        timeout=args.timeout,
        timeout_retries=args.timeout_retries,
        wait=args.wait,
    )

    if args.output is None:
        if args.format.lower() == "json":
            results = results_to_json(results)
        elif args.format.lower() == "csv":
            results = results_to_csv(results)
        print(results)
    else:
        for path in args.output:
            json_path = path.lower().endswith(".json")
            csv_path = path.lower().endswith(".csv")

            if not json_path and not csv_path:
                logging.error(f"Output path {path} must end in .json or .csv")
            elif json_path:
                output_to_file(path, results_to_json(results))
            else:
                output_to_file(path, results_to_csv(results))


if __name__ == "__main__":
    _main()
