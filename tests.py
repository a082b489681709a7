#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import ipaddress
import unittest

import checkspf
import checkspf.mechanism
import checkspf.network
import checkspf.spf
from checkspf.mechanism import SPFResult
from checkspf.utils import DNSException, DNSExceptionNXDOMAIN

domain = "google.com"


class FakeDNSClient(checkspf.DNSClient):
    """Answers DNS queries from dictionaries"""

    def __init__(self, txt=None, addresses=None, mx=None, ptr=None, failing=()):
        checkspf.DNSClient.__init__(self)
        self.txt = txt or {}
        self.addresses = addresses or {}
        self.mx = mx or {}
        self.ptr = ptr or {}
        self.failing = set(failing)
        self.queries = []

    def _answer(self, table, name):
        name = name.lower()
        self.queries.append(name)
        if name in self.failing:
            raise DNSException("The DNS operation timed out.")
        if name not in table:
            raise DNSExceptionNXDOMAIN("The domain does not exist.")
        return list(table[name])

    def lookup_txt(self, domain):
        return self._answer(self.txt, domain)

    def lookup_addresses(self, hostname):
        return self._answer(self.addresses, hostname)

    def lookup_mx(self, domain):
        return self._answer(self.mx, domain)

    def lookup_reverse(self, ip_address):
        try:
            return self._answer(self.ptr, ip_address)
        except DNSExceptionNXDOMAIN:
            return []


class TestMechanism(unittest.TestCase):
    def testNewMechanism(self):
        """Terms are split into a name, domain and prefix"""
        tests = [
            ("all", "all", domain, ""),
            ("ip6:1080::8:800:68.0.3.1", "ip6", "1080::8:800:68.0.3.1", ""),
            ("ip6:1080::8:800:68.0.3.1/96", "ip6", "1080::8:800:68.0.3.1", "96"),
            ("ip4:192.168.0.1", "ip4", "192.168.0.1", ""),
            ("ip4:192.168.0.1/16", "ip4", "192.168.0.1", "16"),
            ("a", "a", domain, ""),
            ("a/24", "a", domain, "24"),
            ("a:offsite.example.com", "a", "offsite.example.com", ""),
            ("a:offsite.example.com/24", "a", "offsite.example.com", "24"),
            ("mx", "mx", domain, ""),
            ("mx/24", "mx", domain, "24"),
            ("mx:deferrals.domain.com", "mx", "deferrals.domain.com", ""),
            ("mx:deferrals.domain.com/24", "mx", "deferrals.domain.com", "24"),
            ("ptr", "ptr", domain, ""),
            ("ptr:domain.name", "ptr", "domain.name", ""),
            ("include:domain.name", "include", "domain.name", ""),
            ("exists:domain.name", "exists", "domain.name", ""),
            ("redirect=domain.name", "redirect", "domain.name", ""),
            ("redirect:domain.name", "redirect", "domain.name", ""),
            ("a:example.com/24//64", "a", "example.com", "24//64"),
            ("mx//64", "mx", domain, "/64"),
        ]

        for raw, name, expected_domain, prefix in tests:
            mechanism = checkspf.mechanism.parse_mechanism(raw, SPFResult.PASS, domain)
            self.assertEqual(mechanism.name, name, raw)
            self.assertEqual(mechanism.domain, expected_domain, raw)
            self.assertEqual(mechanism.prefix, prefix, raw)

    def testQualifiers(self):
        """The qualifier character selects the result of a mechanism"""
        tests = [
            ("+all", SPFResult.PASS),
            ("-ip6:1080::8:800:68.0.3.1", SPFResult.FAIL),
            ("~ip6:1080::8:800:68.0.3.1/96", SPFResult.SOFTFAIL),
            ("?ip4:192.168.0.1", SPFResult.NEUTRAL),
            ("ip4:192.168.0.1/16", SPFResult.PASS),
            ("-a", SPFResult.FAIL),
            ("~a/24", SPFResult.SOFTFAIL),
            ("?a:offsite.example.com", SPFResult.NEUTRAL),
        ]
        for term, expected in tests:
            qualifier, rest = checkspf.mechanism.split_qualifier(term)
            mechanism = checkspf.mechanism.parse_mechanism(rest, qualifier, domain)
            self.assertEqual(mechanism.qualifier, expected, term)

    def testInvalidMechanism(self):
        """Empty values and unknown names raise SPFInvalidMechanism"""
        tests = [
            "ip4:",
            "include:",
            "ip4:127.0.0.1/",
            "ip4:/",
            "ip4/:",
            "/:",
            ":/",
            "redirect=",
            "=",
            "",
            "include",
            "exists",
            "ip4",
            "foo",
            "exp=explain.example.com",
            "all:example.com",
            "ptr/24",
            "include:example.com/24",
            "ip4:78.46.96.236/99",
            "ip4:1200:0000:AB00:1234:0000:2552:7777:1313",
            "ip4:relay.mailchannels.net",
            "ip6:1200:0000:AB00:1234:O000:2552:7777:1313",
            "ip6:78.46.96.236",
            "ip6:1200:0000:AB00:1234:0000:2552:7777:1313/130",
            "ip4:192.0.2.0/024",
            "a/33",
            "a/24//",
            "a/24//129",
            "mx//",
            "exists:%{z}.example.com",
            "include:%{i",
        ]

        for term in tests:
            with self.assertRaises(checkspf.SPFInvalidMechanism, msg=term) as cm:
                checkspf.mechanism.parse_mechanism(term, SPFResult.PASS, "domain")
            self.assertEqual(cm.exception.term, term)

    def testMacroSyntax(self):
        """Well-formed macros are accepted in domain-specs"""
        for term in [
            "exists:%{i}.spf.hc0000-xx.iphmx.com",
            "include:%{ir}.%{v}.%{d}.spf.has.pphosted.com",
            "exists:%{l1r-}.%{d2}._spf.example.com",
            "a:%%.%_.%-.example.com",
        ]:
            mechanism = checkspf.mechanism.parse_mechanism(
                term, SPFResult.PASS, "example.com"
            )
            self.assertIn("%", mechanism.domain)

    def testRoundTrip(self):
        """Rendering a parsed mechanism gives back the original text"""
        tests = [
            "ip4:192.0.2.0/24",
            "-ip4:192.0.2.1",
            "ip6:2001:db8::/32",
            "~a",
            "a/24",
            "a//64",
            "?mx:mail.example.com/24",
            "mx:example.org/24//64",
            "ptr",
            "-ptr:example.org",
            "include:_spf.example.com",
            "~include:_spf.example.com",
            "exists:%{i}._spf.example.com",
            "redirect=_spf.example.com",
            "+all",
            "-all",
            "~all",
            "?all",
        ]
        for text in tests:
            qualifier, rest = checkspf.mechanism.split_qualifier(text)
            mechanism = checkspf.mechanism.parse_mechanism(
                rest, qualifier, "example.com"
            )
            self.assertEqual(checkspf.mechanism_to_string(mechanism), text)

    def testRenderNormalizesQualifier(self):
        """The default + qualifier is only written for all"""
        qualifier, rest = checkspf.mechanism.split_qualifier("+ip4:192.0.2.1")
        mechanism = checkspf.mechanism.parse_mechanism(rest, qualifier, "example.com")
        self.assertEqual(checkspf.mechanism_to_string(mechanism), "ip4:192.0.2.1")
        all_mechanism = checkspf.mechanism.parse_mechanism("all", SPFResult.PASS)
        self.assertEqual(checkspf.mechanism_to_string(all_mechanism), "+all")

    def testResultValues(self):
        """Results use the RFC 7208 names"""
        self.assertEqual(SPFResult.SOFTFAIL.value, "softfail")
        self.assertEqual(SPFResult.PERMERROR, "permerror")
        self.assertEqual(len(SPFResult), 7)


class TestNetwork(unittest.TestCase):
    def testBuildNetwork(self):
        tests = [
            ("192.168.0.0", "24", "192.168.0.0/24"),
            ("1080::8:800:68.0.3.1", "128", "1080::8:800:68.0.3.1/128"),
            ("192.0.2.1", "", "192.0.2.1/32"),
            ("2001:db8::1", "", "2001:db8::1/128"),
            ("192.0.2.77", "24", "192.0.2.0/24"),
        ]
        for address, prefix, cidr in tests:
            network = checkspf.network.build_network(address, prefix)
            self.assertEqual(network, ipaddress.ip_network(cidr))

    def testInvalidNetwork(self):
        for address, prefix in [
            ("192.168.0.0", "34"),
            ("2001:db8::", "129"),
            ("example.com", ""),
            ("192.168.0.0", "x"),
        ]:
            with self.assertRaises(ValueError):
                checkspf.network.build_network(address, prefix)

    def testContains(self):
        network = checkspf.network.build_network("192.0.2.0", "24")
        self.assertTrue(
            checkspf.network.network_contains(
                network, ipaddress.ip_address("192.0.2.200")
            )
        )
        self.assertFalse(
            checkspf.network.network_contains(
                network, ipaddress.ip_address("203.0.113.5")
            )
        )
        self.assertFalse(
            checkspf.network.network_contains(network, ipaddress.ip_address("::1"))
        )

    def testAnyContains(self):
        ip = ipaddress.ip_address("2001:db8::5")
        self.assertFalse(checkspf.network.any_network_contains([], ip))
        networks = checkspf.network.build_networks(
            ["192.0.2.1", "2001:db8::1", "not an address"], "24//64"
        )
        self.assertEqual(len(networks), 2)
        self.assertTrue(checkspf.network.any_network_contains(networks, ip))
        self.assertTrue(
            checkspf.network.any_network_contains(
                networks, ipaddress.ip_address("192.0.2.99")
            )
        )

    def testSinglePrefixOnlyAppliesToIPv4(self):
        networks = checkspf.network.build_networks(["2001:db8::1"], "24")
        self.assertEqual(networks, [ipaddress.ip_network("2001:db8::1/128")])


class TestSPFRecord(unittest.TestCase):
    def testParseRecord(self):
        record = "v=spf1 ip4:192.0.2.1 mx:mail.example.com -all"
        spf_record = checkspf.parse_spf_record(record, "Example.com")
        self.assertEqual(spf_record.domain, "example.com")
        self.assertEqual(spf_record.version, "spf1")
        self.assertEqual(spf_record.record, record)
        self.assertEqual(len(spf_record.mechanisms), 3)
        self.assertEqual(spf_record.mechanisms[2].qualifier, SPFResult.FAIL)
        self.assertEqual(spf_record.dns_lookups, 1)

    def testUppercaseSPFMechanism(self):
        """Treat uppercase SPF mechanisms as valid"""
        spf_record = checkspf.parse_spf_record(
            "v=spf1 IP4:147.75.8.208 -ALL", "example.no"
        )
        names = [m.name for m in spf_record.mechanisms]
        self.assertEqual(names, ["ip4", "all"])

    def testSplitSPFRecord(self):
        """Split SPF records are parsed properly"""
        rec = '"v=spf1 ip4:147.75.8.208 " "include:_spf.salesforce.com -all"'
        spf_record = checkspf.parse_spf_record(rec, "example.com")
        self.assertEqual(len(spf_record.mechanisms), 3)
        self.assertEqual(spf_record.mechanisms[1].domain, "_spf.salesforce.com")

    def testInvalidVersion(self):
        for record in ["v=spf10 -all", "spf1 -all", "", "v=spf2 -all", "-all"]:
            with self.assertRaises(checkspf.SPFSyntaxError, msg=record):
                checkspf.parse_spf_record(record, "example.com")

    def testVersionOnly(self):
        spf_record = checkspf.parse_spf_record("v=spf1", "example.com")
        self.assertEqual(spf_record.mechanisms, ())

    def testMalformedInput(self):
        with self.assertRaises(checkspf.SPFInvalidMechanism) as cm:
            checkspf.parse_spf_record("v=spf1 ip4:", "example.com")
        self.assertEqual(cm.exception.term, "ip4:")

    def testSPFSyntaxErrors(self):
        """SPF record syntax errors raise SPFSyntaxError"""
        spf_record = (
            '"v=spf1 mx a:mail.cohaesio.net include: trustpilotservice.com ~all"'
        )
        self.assertRaises(
            checkspf.SPFSyntaxError,
            checkspf.parse_spf_record,
            spf_record,
            "2021.ai",
        )

    def testConcatenatedAll(self):
        """An all mechanism glued to the previous term is invalid"""
        self.assertRaises(
            checkspf.SPFInvalidMechanism,
            checkspf.parse_spf_record,
            "v=spf1 ip4:203.0.113.7~all",
            "example.com",
        )

    def testSPFIncludeLoop(self):
        """SPF record with include loop raises SPFIncludeLoop"""
        for record in [
            '"v=spf1 include:example.com"',
            "v=spf1 -all include:Example.COM",
            "v=spf1 ip4:192.0.2.1 include:example.com ~all",
        ]:
            self.assertRaises(
                checkspf.SPFIncludeLoop,
                checkspf.parse_spf_record,
                record,
                "example.com",
            )

    def testTooManySPFDNSLookups(self):
        """Ten mechanisms that need DNS lookups raise SPFTooManyDNSLookups"""
        record = "v=spf1 " + " ".join(["a"] * 10) + " -all"
        with self.assertRaises(checkspf.SPFTooManyDNSLookups) as cm:
            checkspf.parse_spf_record(record, "example.com")
        self.assertEqual(cm.exception.data["dns_lookups"], 10)

        record = "v=spf1 a mx ptr exists:x.example.com include:_spf.example.net "
        record += "a:a.example.com mx:mx.example.com a a -all"
        spf_record = checkspf.parse_spf_record(record, "example.com")
        self.assertEqual(spf_record.dns_lookups, 9)

        record = record.replace("-all", "redirect=_spf.example.org")
        self.assertRaises(
            checkspf.SPFTooManyDNSLookups,
            checkspf.parse_spf_record,
            record,
            "example.com",
        )

    def testInheritedDNSLookups(self):
        """DNS lookups used by parent records count against the limit"""
        record = "v=spf1 a mx -all"
        spf_record = checkspf.parse_spf_record(record, "example.com", dns_lookups=7)
        self.assertEqual(spf_record.dns_lookups, 9)
        self.assertRaises(
            checkspf.SPFTooManyDNSLookups,
            checkspf.parse_spf_record,
            record,
            "example.com",
            dns_lookups=8,
        )

    def testIPMechanismsDoNotCount(self):
        record = "v=spf1 " + " ".join(f"ip4:192.0.2.{i}" for i in range(20)) + " -all"
        spf_record = checkspf.parse_spf_record(record, "example.com")
        self.assertEqual(spf_record.dns_lookups, 0)

    def testModifiers(self):
        """Unknown modifiers are kept but not evaluated"""
        record = "v=spf1 ip4:192.0.2.1 exp=explain._spf.%{d} foo=bar -all"
        spf_record = checkspf.parse_spf_record(record, "example.com")
        self.assertEqual(
            spf_record.modifiers,
            (("exp", "explain._spf.%{d}"), ("foo", "bar")),
        )
        self.assertEqual(len(spf_record.mechanisms), 2)
        self.assertEqual(spf_record.dns_lookups, 0)

    def testDuplicateModifiers(self):
        for record in [
            "v=spf1 redirect=a.example redirect=b.example",
            "v=spf1 -all exp=a.example exp=b.example",
        ]:
            self.assertRaises(
                checkspf.SPFSyntaxError,
                checkspf.parse_spf_record,
                record,
                "example.com",
            )
        self.assertRaises(
            checkspf.SPFSyntaxError,
            checkspf.parse_spf_record,
            "v=spf1 exp= -all",
            "example.com",
        )

    def testRecordToString(self):
        record = "v=spf1 ip4:192.0.2.1 mx ~include:_spf.example.net -all exp=x.example.com"
        spf_record = checkspf.parse_spf_record(record, "example.com")
        self.assertEqual(checkspf.spf_record_to_string(spf_record), record)

        spf_record = checkspf.parse_spf_record(
            "v=spf1 +mx redirect:_spf.example.net", "example.com"
        )
        self.assertEqual(
            checkspf.spf_record_to_string(spf_record),
            "v=spf1 mx redirect=_spf.example.net",
        )

    def testRecordToStringKeepsTermOrder(self):
        """Modifiers are rendered where they appear in the record"""
        for record in [
            "v=spf1 exp=x.example.com -all",
            "v=spf1 ip4:192.0.2.1 foo=bar mx redirect=_spf.example.net",
        ]:
            spf_record = checkspf.parse_spf_record(record, "example.com")
            self.assertEqual(checkspf.spf_record_to_string(spf_record), record)

    def testQualifiedRedirect(self):
        """A qualifier on the redirect modifier is invalid"""
        for record in [
            "v=spf1 -redirect=_spf.example.net",
            "v=spf1 ip4:192.0.2.1 ~redirect:_spf.example.net",
        ]:
            self.assertRaises(
                checkspf.SPFInvalidMechanism,
                checkspf.parse_spf_record,
                record,
                "example.com",
            )

    def testDescribeRecord(self):
        spf_record = checkspf.parse_spf_record("v=spf1 a/24 -all", "example.com")
        description = checkspf.describe_spf_record(spf_record)
        self.assertIn("Domain: example.com", description)
        self.assertIn("Version: spf1", description)
        self.assertIn("\ta:example.com/24 - pass", description)
        self.assertIn("\tall:example.com - fail", description)


class TestQuerySPFRecord(unittest.TestCase):
    def testQuery(self):
        dns_client = FakeDNSClient(
            txt={
                "example.com": [
                    "google-site-verification=abc",
                    "v=spf10 -all",
                    "v=spf1 -all",
                ]
            }
        )
        record = checkspf.query_spf_record("example.com", dns_client=dns_client)
        self.assertEqual(record, "v=spf1 -all")

    def testRecordNotFound(self):
        dns_client = FakeDNSClient(txt={"example.com": ["v=DMARC1; p=none"]})
        for name in ["example.com", "missing.example.com"]:
            with self.assertRaises(checkspf.SPFRecordNotFound) as cm:
                checkspf.query_spf_record(name, dns_client=dns_client)
            self.assertEqual(cm.exception.domain, name)

    def testLookupFailed(self):
        dns_client = FakeDNSClient(failing=["example.com"])
        self.assertRaises(
            checkspf.SPFLookupFailed,
            checkspf.query_spf_record,
            "example.com",
            dns_client=dns_client,
        )

    def testMultipleRecords(self):
        dns_client = FakeDNSClient(
            txt={"example.com": ["v=spf1 -all", "v=spf1 ~all"]}
        )
        self.assertRaises(
            checkspf.MultipleSPFTXTRecords,
            checkspf.query_spf_record,
            "example.com",
            dns_client=dns_client,
        )


class TestEvaluation(unittest.TestCase):
    def setUp(self):
        self.dns_client = FakeDNSClient(
            txt={
                "example.com": ["v=spf1 ip4:192.0.2.1 ip4:192.0.2.0/24 -all"],
                "_spf.example.net": ["v=spf1 ip4:198.51.100.0/24 -all"],
                "soft.example.net": ["v=spf1 ~all"],
                "broken.example.net": ["v=spf1 ip4:"],
                "a.example": ["v=spf1 include:b.example -all"],
                "b.example": ["v=spf1 include:a.example -all"],
            },
            addresses={
                "example.com": ["192.0.2.10", "2001:db8::10"],
                "mail.example.com": ["192.0.2.25"],
                "mx2.example.com": ["203.0.113.25"],
                "exists.example.com": ["127.0.0.2"],
            },
            mx={"example.com": ["mail.example.com", "dead.example.com"]},
            ptr={"192.0.2.5": ["host5.mail.example.com"]},
            failing=["failing.example.com", "_spf.failing.example"],
        )

    def evaluate(self, record, ip_address, domain="example.com"):
        spf_record = checkspf.parse_spf_record(record, domain)
        return checkspf.evaluate_spf_record(
            spf_record, ip_address, dns_client=self.dns_client
        )

    def testShortCircuit(self):
        record = "v=spf1 ip4:1.2.3.4 -all"
        self.assertEqual(self.evaluate(record, "1.2.3.4"), SPFResult.PASS)
        self.assertEqual(self.evaluate(record, "9.9.9.9"), SPFResult.FAIL)

    def testFirstMatchWins(self):
        record = "v=spf1 -ip4:192.0.2.1 ip4:192.0.2.0/24 ~all"
        self.assertEqual(self.evaluate(record, "192.0.2.1"), SPFResult.FAIL)
        self.assertEqual(self.evaluate(record, "192.0.2.2"), SPFResult.PASS)
        self.assertEqual(self.evaluate(record, "198.51.100.1"), SPFResult.SOFTFAIL)

    def testNoMatchIsNeutral(self):
        self.assertEqual(
            self.evaluate("v=spf1 ip4:1.2.3.4", "5.6.7.8"), SPFResult.NEUTRAL
        )
        self.assertEqual(self.evaluate("v=spf1", "5.6.7.8"), SPFResult.NEUTRAL)

    def testIPv6(self):
        record = "v=spf1 ip6:2001:db8::/32 -all"
        self.assertEqual(self.evaluate(record, "2001:db8::1"), SPFResult.PASS)
        self.assertEqual(self.evaluate(record, "2001:db9::1"), SPFResult.FAIL)
        self.assertEqual(self.evaluate(record, "192.0.2.1"), SPFResult.FAIL)

    def testIPv4MappedAddress(self):
        record = "v=spf1 ip4:192.0.2.1 -all"
        self.assertEqual(self.evaluate(record, "::ffff:192.0.2.1"), SPFResult.PASS)

    def testQualifierMapping(self):
        self.assertEqual(self.evaluate("v=spf1 ~a", "192.0.2.10"), SPFResult.SOFTFAIL)
        self.assertEqual(self.evaluate("v=spf1 ?mx", "192.0.2.25"), SPFResult.NEUTRAL)
        self.assertEqual(self.evaluate("v=spf1 mx", "192.0.2.25"), SPFResult.PASS)
        self.assertEqual(self.evaluate("v=spf1 -a -all", "2001:db8::10"), SPFResult.FAIL)

    def testAMechanism(self):
        self.assertEqual(
            self.evaluate("v=spf1 a -all", "192.0.2.11"), SPFResult.FAIL
        )
        self.assertEqual(
            self.evaluate("v=spf1 a/24 -all", "192.0.2.11"), SPFResult.PASS
        )
        self.assertEqual(
            self.evaluate("v=spf1 a//64 -all", "2001:db8::ffff"), SPFResult.PASS
        )
        self.assertEqual(
            self.evaluate("v=spf1 a:mail.example.com -all", "192.0.2.25"),
            SPFResult.PASS,
        )

    def testMXMechanism(self):
        self.assertEqual(
            self.evaluate("v=spf1 mx -all", "192.0.2.25"), SPFResult.PASS
        )
        self.assertEqual(
            self.evaluate("v=spf1 mx -all", "203.0.113.25"), SPFResult.FAIL
        )
        self.assertEqual(
            self.evaluate("v=spf1 mx/24 -all", "192.0.2.200"), SPFResult.PASS
        )

    def testPTRMechanism(self):
        self.assertEqual(self.evaluate("v=spf1 ptr -all", "192.0.2.5"), SPFResult.PASS)
        self.assertEqual(
            self.evaluate("v=spf1 ptr:mail.example.com -all", "192.0.2.5"),
            SPFResult.PASS,
        )
        self.assertEqual(
            self.evaluate("v=spf1 ptr:example.org -all", "192.0.2.5"),
            SPFResult.FAIL,
        )
        self.assertEqual(self.evaluate("v=spf1 ptr -all", "192.0.2.6"), SPFResult.FAIL)

    def testExistsMechanism(self):
        self.assertEqual(
            self.evaluate("v=spf1 exists:exists.example.com -all", "203.0.113.9"),
            SPFResult.PASS,
        )
        self.assertEqual(
            self.evaluate("v=spf1 exists:nope.example.com -all", "203.0.113.9"),
            SPFResult.FAIL,
        )

    def testMacrosAreNotExpanded(self):
        self.assertEqual(
            self.evaluate("v=spf1 exists:%{i}.example.com -all", "203.0.113.9"),
            SPFResult.FAIL,
        )

    def testFailedLookupsDoNotMatch(self):
        for record in [
            "v=spf1 a:failing.example.com -all",
            "v=spf1 mx:failing.example.com -all",
            "v=spf1 exists:failing.example.com -all",
        ]:
            self.assertEqual(self.evaluate(record, "192.0.2.10"), SPFResult.FAIL)

    def testIncludePass(self):
        record = "v=spf1 include:_spf.example.net -all"
        self.assertEqual(self.evaluate(record, "198.51.100.7"), SPFResult.PASS)
        self.assertEqual(self.evaluate(record, "203.0.113.1"), SPFResult.FAIL)

    def testIncludeFallsThrough(self):
        """An include that does not pass lets evaluation continue"""
        record = "v=spf1 include:soft.example.net ip4:1.2.3.4 -all"
        self.assertEqual(self.evaluate(record, "1.2.3.4"), SPFResult.PASS)
        self.assertEqual(self.evaluate(record, "5.5.5.5"), SPFResult.FAIL)

    def testIncludeReturnsIncludedResult(self):
        """A matching include yields pass whatever its qualifier"""
        record = "v=spf1 -include:_spf.example.net ~all"
        self.assertEqual(self.evaluate(record, "198.51.100.7"), SPFResult.PASS)
        self.assertEqual(self.evaluate(record, "203.0.113.1"), SPFResult.SOFTFAIL)

        dns_client = FakeDNSClient(txt={"x.example": ["v=spf1 ip4:192.0.2.1 -all"]})
        spf_record = checkspf.parse_spf_record(
            "v=spf1 -include:x.example +all", "example.com"
        )
        result = checkspf.evaluate_spf_record(
            spf_record, "192.0.2.1", dns_client=dns_client
        )
        self.assertEqual(result, SPFResult.PASS)

    def testIncludeMissingSPF(self):
        """An include of a domain without an SPF record is a permerror"""
        record = "v=spf1 include:example.doesnotexist ~all"
        self.assertEqual(self.evaluate(record, "192.0.2.1"), SPFResult.PERMERROR)

    def testIncludeErrorsAreSkipped(self):
        for record in [
            "v=spf1 include:_spf.failing.example -all",
            "v=spf1 include:broken.example.net -all",
        ]:
            self.assertEqual(self.evaluate(record, "192.0.2.1"), SPFResult.FAIL)

    def testIncludeCycle(self):
        """Longer include loops run out of DNS lookups"""
        record = "v=spf1 include:b.example -all"
        self.assertEqual(
            self.evaluate(record, "192.0.2.1", domain="a.example"),
            SPFResult.PERMERROR,
        )

    def testRedirect(self):
        record = "v=spf1 redirect=_spf.example.net"
        self.assertEqual(self.evaluate(record, "198.51.100.7"), SPFResult.PASS)
        self.assertEqual(self.evaluate(record, "203.0.113.1"), SPFResult.FAIL)
        record = "v=spf1 redirect=soft.example.net"
        self.assertEqual(self.evaluate(record, "203.0.113.1"), SPFResult.SOFTFAIL)

    def testRedirectErrors(self):
        self.assertEqual(
            self.evaluate("v=spf1 redirect=_spf.failing.example", "192.0.2.1"),
            SPFResult.TEMPERROR,
        )
        self.assertEqual(
            self.evaluate("v=spf1 redirect=missing.example", "192.0.2.1"),
            SPFResult.PERMERROR,
        )
        self.assertEqual(
            self.evaluate("v=spf1 redirect=broken.example.net", "192.0.2.1"),
            SPFResult.PERMERROR,
        )

    def testSharedDNSLookupBudget(self):
        """Sibling includes share the DNS lookup limit"""
        dns_client = FakeDNSClient(
            txt={
                "one.example": ["v=spf1 a a -all"],
                "two.example": ["v=spf1 a a ip4:192.0.2.1 -all"],
            }
        )
        record = "v=spf1 a a a a include:one.example include:two.example -all"
        spf_record = checkspf.parse_spf_record(record, "example.com")
        self.assertEqual(spf_record.dns_lookups, 6)
        result = checkspf.evaluate_spf_record(
            spf_record, "192.0.2.1", dns_client=dns_client
        )
        self.assertEqual(result, SPFResult.PERMERROR)

        record = "v=spf1 a a a a include:two.example -all"
        spf_record = checkspf.parse_spf_record(record, "example.com")
        result = checkspf.evaluate_spf_record(
            spf_record, "192.0.2.1", dns_client=dns_client
        )
        self.assertEqual(result, SPFResult.PASS)

    def testIdempotent(self):
        spf_record = checkspf.parse_spf_record(
            "v=spf1 include:_spf.example.net mx -all", "example.com"
        )
        first = checkspf.evaluate_spf_record(
            spf_record, "198.51.100.7", dns_client=self.dns_client
        )
        second = checkspf.evaluate_spf_record(
            spf_record, "198.51.100.7", dns_client=self.dns_client
        )
        self.assertEqual(first, SPFResult.PASS)
        self.assertEqual(first, second)
        self.assertEqual(spf_record.dns_lookups, 2)

    def testInvalidIPAddress(self):
        spf_record = checkspf.parse_spf_record("v=spf1 -all", "example.com")
        self.assertRaises(
            ValueError,
            checkspf.evaluate_spf_record,
            spf_record,
            "not-an-ip",
            dns_client=self.dns_client,
        )


class TestCheckSender(unittest.TestCase):
    def setUp(self):
        self.dns_client = FakeDNSClient(
            txt={
                "example.com": ["v=spf1 ip4:192.0.2.1 ip4:192.0.2.0/24 -all"],
                "nospf.example": ["v=DMARC1; p=reject"],
                "broken.example": ["v=spf1 ip4:"],
                "loop.example": ["v=spf1 include:loop.example -all"],
                "busy.example": ["v=spf1 " + " ".join(["a"] * 10) + " -all"],
            },
            failing=["failing.example"],
        )

    def check(self, ip_address, sender, **kwargs):
        return checkspf.check_sender(
            ip_address, sender, dns_client=self.dns_client, **kwargs
        )

    def testEndToEnd(self):
        self.assertEqual(
            self.check("192.0.2.1", "user@example.com"), (SPFResult.PASS, None)
        )
        self.assertEqual(
            self.check("192.0.2.200", "user@example.com"), (SPFResult.PASS, None)
        )
        self.assertEqual(
            self.check("203.0.113.5", "user@example.com"), (SPFResult.FAIL, None)
        )

    def testNoRecord(self):
        self.assertEqual(
            self.check("192.0.2.1", "user@nospf.example"), (SPFResult.NONE, None)
        )
        self.assertEqual(
            self.check("192.0.2.1", "user@missing.example"), (SPFResult.NONE, None)
        )

    def testTemporaryError(self):
        result, error = self.check("192.0.2.1", "user@failing.example")
        self.assertEqual(result, SPFResult.TEMPERROR)
        self.assertIsInstance(error, checkspf.SPFLookupFailed)

    def testPermanentErrors(self):
        tests = [
            ("user@broken.example", checkspf.SPFInvalidMechanism),
            ("user@loop.example", checkspf.SPFIncludeLoop),
            ("user@busy.example", checkspf.SPFTooManyDNSLookups),
        ]
        for sender, error_class in tests:
            result, error = self.check("192.0.2.1", sender)
            self.assertEqual(result, SPFResult.PERMERROR, sender)
            self.assertIsInstance(error, error_class, sender)

    def testRecordOverride(self):
        result, error = self.check(
            "198.51.100.1",
            "user@example.com",
            record="v=spf1 ip4:198.51.100.0/24 -all",
        )
        self.assertEqual(result, SPFResult.PASS)
        self.assertIsNone(error)

    def testInvalidSender(self):
        for ip_address, sender in [
            ("192.0.2.1", "example.com"),
            ("192.0.2.1", "user@"),
            ("300.0.0.1", "user@example.com"),
        ]:
            self.assertRaises(checkspf.InvalidSender, self.check, ip_address, sender)

    def testCheckSPF(self):
        results = checkspf.check_spf(
            "192.0.2.1", "user@Example.com", dns_client=self.dns_client
        )
        self.assertEqual(results["domain"], "example.com")
        self.assertEqual(results["result"], "pass")
        self.assertEqual(
            results["record"], "v=spf1 ip4:192.0.2.1 ip4:192.0.2.0/24 -all"
        )
        self.assertEqual(results["dns_lookups"], 0)
        self.assertNotIn("error", results)

        results = checkspf.check_spf(
            "192.0.2.1", "user@broken.example", dns_client=self.dns_client
        )
        self.assertEqual(results["result"], "permerror")
        self.assertIsNone(results["record"])
        self.assertIn("error", results)

        results = checkspf.check_spf(
            "192.0.2.1", "example.com", dns_client=self.dns_client
        )
        self.assertIsNone(results["result"])
        self.assertIn("@", results["error"])

    def testCheckSenders(self):
        results = checkspf.check_senders(
            "192.0.2.1",
            ["b@nospf.example", "a@example.com", "a@example.com", ""],
            dns_client=self.dns_client,
        )
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0]["sender"], "a@example.com")
        self.assertEqual(results[1]["result"], "none")

        single = checkspf.check_senders(
            "192.0.2.1", ["a@example.com"], dns_client=self.dns_client
        )
        self.assertEqual(single["result"], "pass")

    def testOutput(self):
        results = checkspf.check_senders(
            "192.0.2.1",
            ["a@example.com", "b@failing.example"],
            dns_client=self.dns_client,
        )
        csv = checkspf.results_to_csv(results)
        lines = csv.splitlines()
        self.assertEqual(
            lines[0], "ip_address,sender,domain,result,record,dns_lookups,error"
        )
        self.assertEqual(len(lines), 3)
        self.assertIn("temperror", lines[2])
        self.assertIn('"result": "pass"', checkspf.results_to_json(results))

    @unittest.skip("Requires network access")
    def testKnownGood(self):
        """Google's mail servers are allowed to send email for gmail.com"""
        result, error = checkspf.check_sender("209.85.220.41", "user@gmail.com")
        self.assertEqual(result, SPFResult.PASS, error)


if __name__ == "__main__":
    unittest.main(verbosity=2)
