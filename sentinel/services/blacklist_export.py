#!/usr/bin/env python3
"""
IP blacklist renderers.

Turns a ranked list of BlacklistEntry into a downloadable document. Every
format is rendered fully in memory; an empty list yields an empty but valid
document (blank text, ``[]``, header-only CSV, comment-only config).
"""

import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sentinel.models import BlacklistEntry, utcnow

LICENSE_NOTICE = (
    "Licensed under CC-BY-SA-4.0 (https://creativecommons.org/licenses/by-sa/4.0/). "
    "Review before use: legitimate users may share addresses with attackers."
)


class UnsupportedFormatError(ValueError):
    def __init__(self, requested: str):
        self.requested = requested
        super().__init__(f"Unsupported blacklist format: {requested!r}. Use one of: {', '.join(FORMATS)}")


@dataclass
class RenderedBlacklist:
    body: str
    media_type: str
    filename: str


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _config_header(server: str, generated_at: datetime) -> List[str]:
    return [
        f"# {server} IP deny list",
        f"# Generated: {generated_at.isoformat()}",
        f"# {LICENSE_NOTICE}",
    ]


def render_txt(entries: List[BlacklistEntry], generated_at: datetime) -> str:
    return "".join(f"{entry.ip}  {entry.attempt_count}\n" for entry in entries)


def render_json(entries: List[BlacklistEntry], generated_at: datetime) -> str:
    return json.dumps(
        [{"ip": entry.ip, "count": entry.attempt_count, "lastSeen": _iso(entry.last_seen)} for entry in entries],
        indent=2,
    )


def render_csv(entries: List[BlacklistEntry], generated_at: datetime) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["ip", "count", "lastSeen"])
    for entry in entries:
        writer.writerow([entry.ip, entry.attempt_count, _iso(entry.last_seen) or ""])
    return buffer.getvalue()


def render_apache(entries: List[BlacklistEntry], generated_at: datetime) -> str:
    lines = _config_header("Apache", generated_at)
    lines.extend(f"Deny from {entry.ip}" for entry in entries)
    return "\n".join(lines) + "\n"


def render_nginx(entries: List[BlacklistEntry], generated_at: datetime) -> str:
    lines = _config_header("Nginx", generated_at)
    lines.extend(f"deny {entry.ip};" for entry in entries)
    return "\n".join(lines) + "\n"


Renderer = Callable[[List[BlacklistEntry], datetime], str]

# format -> (renderer, media type, attachment filename)
FORMATS: Dict[str, tuple] = {
    "txt": (render_txt, "text/plain; charset=utf-8", "ip-blacklist.txt"),
    "json": (render_json, "application/json", "ip-blacklist.json"),
    "csv": (render_csv, "text/csv; charset=utf-8", "ip-blacklist.csv"),
    "apache": (render_apache, "text/plain; charset=utf-8", "apache-deny.conf"),
    "nginx": (render_nginx, "text/plain; charset=utf-8", "nginx-deny.conf"),
}


def render(entries: List[BlacklistEntry], format: str,
           generated_at: Optional[datetime] = None) -> RenderedBlacklist:
    if format not in FORMATS:
        raise UnsupportedFormatError(format)
    renderer, media_type, filename = FORMATS[format]
    body = renderer(list(entries), generated_at or utcnow())
    return RenderedBlacklist(body=body, media_type=media_type, filename=filename)
