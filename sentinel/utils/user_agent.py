"""
User-agent sniffing as ordered (label, predicate) rule lists.

Each list is evaluated top to bottom and the first matching rule wins, so
more specific signatures must come before the generic ones (Edge and Opera
advertise "Chrome", Chrome advertises "Safari", Android advertises "Linux").
"""

import re
from typing import Callable, List, Optional, Tuple

from sentinel.models import UNKNOWN

Rule = Tuple[str, Callable[[str], bool]]


def contains(*needles: str) -> Callable[[str], bool]:
    return lambda ua: any(needle in ua for needle in needles)


def matches(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda ua: compiled.search(ua) is not None


DEVICE_RULES: List[Rule] = [
    ("tablet", matches(r"iPad|Tablet")),
    ("mobile", matches(r"Mobile|iPhone|Android")),
    ("desktop", lambda ua: True),
]

BROWSER_RULES: List[Rule] = [
    ("Firefox", contains("Firefox")),
    ("Samsung Browser", contains("SamsungBrowser")),
    ("Opera", contains("Opera", "OPR")),
    ("Internet Explorer", contains("Trident")),
    ("Edge", contains("Edge")),
    ("Chrome", contains("Chrome")),
    ("Safari", contains("Safari")),
]

OS_RULES: List[Rule] = [
    ("Windows", contains("Windows")),
    ("MacOS", contains("Mac OS")),
    ("UNIX", contains("X11")),
    ("Linux", contains("Linux")),
    ("Android", contains("Android")),
    ("iOS", contains("iOS", "iPhone", "iPad")),
]


def first_match(user_agent: Optional[str], rules: List[Rule]) -> str:
    if not user_agent:
        return UNKNOWN
    for label, predicate in rules:
        if predicate(user_agent):
            return label
    return UNKNOWN


def derive_device(user_agent: Optional[str]) -> str:
    return first_match(user_agent, DEVICE_RULES)


def derive_browser(user_agent: Optional[str]) -> str:
    return first_match(user_agent, BROWSER_RULES)


def derive_os(user_agent: Optional[str]) -> str:
    return first_match(user_agent, OS_RULES)
