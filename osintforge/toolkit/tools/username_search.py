"""
Username search across social platforms (sherlock).

Structured output is the sherlock JSON report:
    {"<username>": {"<site>": {"status": "Claimed", "url_user": "...", ...}}}
Fallback reads the console lines sherlock prints with --print-found:
    [*] Checking username johndoe on:
    [+] Twitter: https://twitter.com/johndoe
"""

from __future__ import annotations

import re
from typing import List, Optional

from pydantic import AnyUrl, BaseModel, ConfigDict, Field

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

USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"


class UsernameSearchInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1, max_length=50, pattern=USERNAME_PATTERN)
    timeout: int = Field(default=60, ge=1, le=300)
    sites: Optional[List[str]] = None
    proxy: Optional[AnyUrl] = None


class SiteResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site: str
    url: str
    found: bool
    response_time: Optional[float] = Field(default=None, alias="responseTime")
    http_status: Optional[int] = Field(default=None, alias="httpStatus")


class UsernameSearchOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    total_sites: int = Field(alias="totalSites")
    found_sites: int = Field(alias="foundSites")
    results: List[SiteResult]


METADATA = ToolMetadata(
    name="username-search",
    display_name="Username Search",
    description="Hunt down social media accounts by username across social networks",
    category=ToolCategory.USERNAME,
    sandbox_image="sherlock/sherlock:latest",
    command=("python3", "sherlock"),
    estimated_time="30-120 seconds",
    rate_limit=RateLimitSpec(max_requests=10, window_ms=60_000),
    default_timeout_ms=300_000,
    sandbox=SandboxProfile(memory="512m", cpus="1.0", network=NetworkMode.BRIDGE),
)


def build_command(params: UsernameSearchInput) -> List[str]:
    args = [params.username, "--timeout", str(params.timeout)]
    if params.sites:
        args.extend(["--site", ",".join(params.sites)])
    if params.proxy:
        args.extend(["--proxy", str(params.proxy)])
    args.append("--print-found")
    return args


def _summarise(username: str, results: List[SiteResult]) -> dict:
    output = UsernameSearchOutput(
        username=username,
        total_sites=len(results),
        found_sites=sum(1 for r in results if r.found),
        results=results,
    )
    return output.model_dump(by_alias=True, exclude_none=True)


def _parse_structured(raw: str) -> Optional[dict]:
    data = extract_json(raw, "{")
    if not isinstance(data, dict) or not data:
        return None
    username = next(iter(data))
    sites = data[username]
    if not isinstance(sites, dict) or not all(isinstance(v, dict) for v in sites.values()):
        return None

    results = [
        SiteResult(
            site=site,
            url=info.get("url_user") or "",
            found=info.get("status") == "Claimed",
            response_time=info.get("response_time_s", info.get("response_time")),
            http_status=info.get("http_status"),
        )
        for site, info in sites.items()
    ]
    return _summarise(username, results)


_FOUND_LINE = re.compile(r"^\[\+\]\s*([^:]+?):\s*(\S+)")
_MISSING_LINE = re.compile(r"^\[-\]\s*([^:]+?):")


def _parse_text(raw: str) -> Optional[dict]:
    username_match = re.search(r"Checking username (\S+)", raw)
    results: List[SiteResult] = []
    for line in raw.splitlines():
        line = line.strip()
        found = _FOUND_LINE.match(line)
        if found:
            results.append(SiteResult(site=found.group(1), url=found.group(2), found=True))
            continue
        missing = _MISSING_LINE.match(line)
        if missing:
            results.append(SiteResult(site=missing.group(1), url="", found=False))

    if not username_match and not results:
        return None
    username = username_match.group(1) if username_match else ""
    return _summarise(username, results)


def parse_output(raw: str) -> ParseOutcome:
    structured = _parse_structured(raw)
    if structured is not None:
        return ParseOutcome(structured)
    fallback = _parse_text(raw)
    if fallback is not None:
        return ParseOutcome(fallback, ParserStrategy.TEXT_FALLBACK)
    raise ParseError("Unrecognised sherlock output", details={"sample": raw[:200]})


DEFINITION = ToolDefinition(
    metadata=METADATA,
    input_model=UsernameSearchInput,
    build_command=build_command,
    parse_output=parse_output,
)
