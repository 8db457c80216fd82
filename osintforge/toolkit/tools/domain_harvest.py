"""Email, subdomain and host harvesting for a domain (theHarvester)."""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from osintforge.errors import ParseError
from osintforge.toolkit.executor import ToolDefinition
from osintforge.toolkit.models import (
    NetworkMode,
    ParseOutcome,
    ParserStrategy,
    RateLimitSpec,
    SandboxProfile,
    ToolCategory,
    ToolMetadata,
)
from osintforge.toolkit.parsing import extract_json

DOMAIN_PATTERN = r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
DEFAULT_SOURCES = ("google", "bing", "linkedin", "twitter")


class DomainHarvestInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    domain: str = Field(min_length=1, max_length=255, pattern=DOMAIN_PATTERN)
    sources: Optional[List[str]] = None
    limit: int = Field(default=100, ge=1, le=500)
    start_from: int = Field(default=0, ge=0, alias="startFrom")
    dns: bool = True
    takeover: bool = False


class DomainHarvestOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    domain: str
    emails: List[str] = []
    hosts: List[str] = []
    ips: List[str] = []
    urls: List[str] = []
    asns: List[str] = []
    interesting_urls: List[str] = Field(default_factory=list, alias="interestingUrls")
    sources: List[str] = []
    total_results: int = Field(default=0, alias="totalResults")


METADATA = ToolMetadata(
    name="domain-harvest",
    display_name="Domain Harvest",
    description="Gather emails, subdomains, hosts, employee names and open ports for a domain",
    category=ToolCategory.DOMAIN,
    sandbox_image="theharvester:latest",
    command=("python3", "theHarvester.py"),
    estimated_time="60-180 seconds",
    rate_limit=RateLimitSpec(max_requests=5, window_ms=60_000),
    default_timeout_ms=300_000,
    sandbox=SandboxProfile(memory="512m", cpus="1.0", network=NetworkMode.BRIDGE),
)


def build_command(params: DomainHarvestInput) -> List[str]:
    sources = params.sources or list(DEFAULT_SOURCES)
    args = ["-d", params.domain, "-b", ",".join(sources), "-l", str(params.limit)]
    if params.start_from > 0:
        args.extend(["-s", str(params.start_from)])
    if params.dns:
        args.append("-n")
    if params.takeover:
        args.append("-t")
    args.extend(["-f", "/tmp/harvester_output"])
    return args


def _summarise(output: DomainHarvestOutput) -> dict:
    output.total_results = len(output.emails) + len(output.hosts) + len(output.ips) + len(output.urls)
    return output.model_dump(by_alias=True)


def _strings(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


def _parse_structured(raw: str) -> Optional[dict]:
    data = extract_json(raw, "{")
    if not isinstance(data, dict):
        return None
    known = {"emails", "hosts", "ips", "urls", "asns", "interesting_urls"}
    if not known & data.keys():
        return None
    return _summarise(DomainHarvestOutput(
        domain=str(data.get("domain", "")),
        emails=_strings(data.get("emails")),
        hosts=_strings(data.get("hosts")),
        ips=_strings(data.get("ips")),
        urls=_strings(data.get("urls")),
        asns=_strings(data.get("asns")),
        interesting_urls=_strings(data.get("interesting_urls")),
        sources=_strings(data.get("sources")),
    ))


# Section headers theHarvester prints before each result block.
_SECTIONS: Dict[str, str] = {
    "emails found": "emails",
    "hosts found": "hosts",
    "ips found": "ips",
    "urls found": "urls",
    "interesting urls found": "interesting_urls",
    "asns found": "asns",
}
_SECTION_HEADER = re.compile(r"\[\*\]\s*(.+?):?\s*\d*\s*$")


def _parse_text(raw: str) -> Optional[dict]:
    buckets: Dict[str, List[str]] = {key: [] for key in _SECTIONS.values()}
    target = re.search(r"Target:\s*(\S+)", raw)
    current: Optional[str] = None
    saw_section = False

    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or set(stripped) <= {"-", "="}:
            continue
        header = _SECTION_HEADER.match(stripped)
        if header:
            label = header.group(1).strip().lower()
            current = next((key for name, key in _SECTIONS.items() if label.startswith(name)), None)
            saw_section = saw_section or current is not None
            continue
        if current and not stripped.startswith("["):
            buckets[current].append(stripped)

    if not saw_section and not target:
        return None
    return _summarise(DomainHarvestOutput(domain=target.group(1) if target else "", **buckets))


def parse_output(raw: str) -> ParseOutcome:
    structured = _parse_structured(raw)
    if structured is not None:
        return ParseOutcome(structured)
    fallback = _parse_text(raw)
    if fallback is not None:
        return ParseOutcome(fallback, ParserStrategy.TEXT_FALLBACK)
    raise ParseError("Unrecognised theHarvester output", details={"sample": raw[:200]})


DEFINITION = ToolDefinition(
    metadata=METADATA,
    input_model=DomainHarvestInput,
    build_command=build_command,
    parse_output=parse_output,
)
