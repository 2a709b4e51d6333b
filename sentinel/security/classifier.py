#!/usr/bin/env python3
"""
🛡️ Request Classifier
Signature tripwire for obviously hostile requests: directory traversal,
SQL / script injection tokens in the URL, and known scanner user agents.
New signatures are appended to the rule list; the first match wins.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern
from urllib.parse import unquote_plus

import structlog

logger = structlog.get_logger(__name__)

URL = "url"
USER_AGENT = "user_agent"


@dataclass(frozen=True)
class SignatureRule:
    """One (label, pattern) pair checked against the URL or the user agent"""
    label: str
    pattern: Pattern
    target: str = URL

    def matches(self, url: str, user_agent: str) -> bool:
        subject = url if self.target == URL else user_agent
        return self.pattern.search(subject) is not None


def _url_rule(label: str, pattern: str) -> SignatureRule:
    return SignatureRule(label, re.compile(pattern, re.IGNORECASE), URL)


def scanner_rule(agent: str) -> SignatureRule:
    return SignatureRule(f"scanner:{agent.lower()}", re.compile(re.escape(agent), re.IGNORECASE), USER_AGENT)


URL_RULES: List[SignatureRule] = [
    _url_rule("directory_traversal", r"\.\./"),
    _url_rule("sql_injection", r"\bselect\b.*\bfrom\b"),
    _url_rule("sql_injection", r"\bunion\b.*\bselect\b"),
    _url_rule("script_injection", r"\bscript\b"),
    _url_rule("script_injection", r"\balert\b.*\("),
    _url_rule("script_injection", r"\beval\b.*\("),
    _url_rule("command_injection", r"\bexec\b.*\("),
    _url_rule("command_injection", r"\bsystem\b.*\("),
]

SCANNER_AGENTS: List[str] = [
    "sqlmap", "nikto", "nessus", "nmap", "masscan", "zgrab", "gobuster", "dirbuster",
]


def default_rules(extra_scanner_agents: Iterable[str] = ()) -> List[SignatureRule]:
    agents = list(SCANNER_AGENTS) + [agent for agent in extra_scanner_agents if agent]
    return URL_RULES + [scanner_rule(agent) for agent in agents]


class RequestClassifier:
    """Ordered signature list, first match wins"""

    def __init__(self, rules: Optional[List[SignatureRule]] = None):
        self.rules = list(rules) if rules is not None else default_rules()

    def match(self, url, user_agent=None) -> Optional[str]:
        """Label of the first matching signature, or None for a clean request"""
        if not isinstance(url, str):
            url = ""
        if not isinstance(user_agent, str):
            user_agent = ""
        decoded = unquote_plus(url)
        for rule in self.rules:
            if rule.matches(decoded, user_agent):
                return rule.label
        return None

    def classify(self, url, user_agent=None) -> bool:
        label = self.match(url, user_agent)
        if label is not None:
            logger.info(f"Suspicious request matched {label}")
        return label is not None


_default_classifier = RequestClassifier()


def classify(url, user_agent=None) -> bool:
    return _default_classifier.classify(url, user_agent)
