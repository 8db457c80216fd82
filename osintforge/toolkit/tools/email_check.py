"""Check which online services an email address is registered with (holehe)."""

from __future__ import annotations

import re
from typing import Any, List, Optional

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
from osintforge.toolkit.parsing import extract_json, pick

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
_EMAIL_IN_TEXT = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")


class EmailCheckInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    only_used: bool = Field(default=True, alias="onlyUsed")
    timeout: int = Field(default=30, ge=5, le=120)


class AccountResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site: str
    exists: bool
    rate_limited: bool = Field(default=False, alias="rateLimit")
    email_recovery: Optional[str] = Field(default=None, alias="emailRecovery")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")


class EmailCheckOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    total_checked: int = Field(alias="totalChecked")
    accounts_found: int = Field(alias="accountsFound")
    accounts: List[AccountResult]


METADATA = ToolMetadata(
    name="email-breach-check",
    display_name="Email Breach Check",
    description="Check if an email address is registered on popular services",
    category=ToolCategory.EMAIL,
    sandbox_image="holehe:latest",
    command=("holehe",),
    estimated_time="30-90 seconds",
    rate_limit=RateLimitSpec(max_requests=10, window_ms=60_000),
    default_timeout_ms=180_000,
    sandbox=SandboxProfile(memory="256m", cpus="0.5", network=NetworkMode.BRIDGE),
)


def build_command(params: EmailCheckInput) -> List[str]:
    args = [params.email]
    if params.only_used:
        args.append("--only-used")
    args.extend(["--timeout", str(params.timeout)])
    args.append("--no-color")
    return args


def _summarise(email: str, accounts: List[AccountResult]) -> dict:
    return EmailCheckOutput(
        email=email,
        total_checked=len(accounts),
        accounts_found=sum(1 for a in accounts if a.exists),
        accounts=accounts,
    ).model_dump(by_alias=True, exclude_none=True)


def _email_from(raw: str) -> str:
    labelled = re.search(r"Email:\s*(\S+@\S+)", raw)
    if labelled:
        return labelled.group(1)
    match = _EMAIL_IN_TEXT.search(raw)
    return match.group(0) if match else ""


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _account(entry: Any) -> Optional[AccountResult]:
    if not isinstance(entry, dict):
        return None
    site = pick(entry, "name", "domain", "site")
    if site is None:
        return None
    return AccountResult(
        site=str(site),
        exists=bool(entry.get("exists", False)),
        rate_limited=bool(pick(entry, "rateLimit", "rate_limit", default=False)),
        email_recovery=_opt_str(pick(entry, "emailrecovery", "emailRecovery")),
        phone_number=_opt_str(pick(entry, "phoneNumber", "phone_number")),
    )


def _parse_structured(raw: str) -> Optional[dict]:
    data = extract_json(raw, "[{")
    if isinstance(data, dict):
        email = data.get("email")
        entries = data.get("accounts") or data.get("results") or []
    elif isinstance(data, list):
        email = None
        entries = data
    else:
        return None
    accounts = [a for a in (_account(e) for e in entries) if a is not None]
    if entries and not accounts:
        return None
    return _summarise(email or _email_from(raw), accounts)


_USED_LINE = re.compile(r"^\s*(?:\[\+\]|✓|✔)\s*(\S+)")
_UNUSED_LINE = re.compile(r"^\s*(?:\[-\]|✗|✘)\s*(\S+)")
_RATE_LIMITED_LINE = re.compile(r"^\s*\[x\]\s*(\S+)")
# Legend lines holehe prints before the results.
_LEGEND = ("Email used", "Email not used", "Rate limit")


def _parse_text(raw: str) -> Optional[dict]:
    accounts: List[AccountResult] = []
    for line in raw.splitlines():
        if any(marker in line for marker in _LEGEND):
            continue
        used = _USED_LINE.match(line)
        if used:
            accounts.append(AccountResult(site=used.group(1), exists=True))
            continue
        unused = _UNUSED_LINE.match(line)
        if unused:
            accounts.append(AccountResult(site=unused.group(1), exists=False))
            continue
        limited = _RATE_LIMITED_LINE.match(line)
        if limited:
            accounts.append(AccountResult(site=limited.group(1), exists=False, rate_limited=True))

    email = _email_from(raw)
    if not accounts and not email:
        return None
    return _summarise(email, accounts)


def parse_output(raw: str) -> ParseOutcome:
    structured = _parse_structured(raw)
    if structured is not None:
        return ParseOutcome(structured)
    fallback = _parse_text(raw)
    if fallback is not None:
        return ParseOutcome(fallback, ParserStrategy.TEXT_FALLBACK)
    raise ParseError("Unrecognised holehe output", details={"sample": raw[:200]})


DEFINITION = ToolDefinition(
    metadata=METADATA,
    input_model=EmailCheckInput,
    build_command=build_command,
    parse_output=parse_output,
)
