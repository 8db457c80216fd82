"""Phone number intelligence (phoneinfoga)."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

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

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"


class PhoneLookupInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(max_length=20, pattern=PHONE_PATTERN, alias="phoneNumber")
    scanners: Optional[List[str]] = None


class PhoneLookupOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: str
    valid: bool = False
    local_format: Optional[str] = Field(default=None, alias="localFormat")
    international_format: Optional[str] = Field(default=None, alias="internationalFormat")
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    country: Optional[str] = None
    carrier: Optional[str] = None
    line_type: Optional[str] = Field(default=None, alias="lineType")
    scanners: Dict[str, Any] = {}


METADATA = ToolMetadata(
    name="phone-lookup",
    display_name="Phone Lookup",
    description="Gather carrier, line type and country information for an international phone number",
    category=ToolCategory.PHONE,
    sandbox_image="phoneinfoga:latest",
    command=("./phoneinfoga",),
    estimated_time="20-60 seconds",
    rate_limit=RateLimitSpec(max_requests=15, window_ms=60_000),
    default_timeout_ms=120_000,
    sandbox=SandboxProfile(memory="256m", cpus="0.5", network=NetworkMode.BRIDGE),
)


def build_command(params: PhoneLookupInput) -> List[str]:
    args = ["scan", "-n", params.phone_number]
    if params.scanners:
        args.extend(["--scanner", ",".join(params.scanners)])
    args.extend(["--output", "json"])
    return args


def _parse_structured(raw: str) -> Optional[dict]:
    data = extract_json(raw, "{")
    if not isinstance(data, dict):
        return None
    number = pick(data, "number", "rawLocal", "raw_local", "e164")
    if number is None:
        return None
    output = PhoneLookupOutput(
        number=str(number),
        valid=bool(data.get("valid", False)),
        local_format=pick(data, "localFormat", "local_format", "local"),
        international_format=pick(data, "internationalFormat", "international_format", "international"),
        country_code=_as_str(pick(data, "countryCode", "country_code")),
        country=pick(data, "country"),
        carrier=pick(data, "carrier"),
        line_type=pick(data, "lineType", "line_type"),
        scanners=data.get("scanners") or {},
    )
    return output.model_dump(by_alias=True, exclude_none=True)


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


_TEXT_FIELDS = {
    "phone number": "number",
    "valid": "valid",
    "local format": "local_format",
    "international format": "international_format",
    "country code": "country_code",
    "country": "country",
    "carrier": "carrier",
    "line type": "line_type",
}
_LABEL_LINE = re.compile(r"^\s*([A-Za-z][A-Za-z ]+?)\s*:\s*(.+?)\s*$")


def _parse_text(raw: str) -> Optional[dict]:
    values: Dict[str, Any] = {}
    for line in raw.splitlines():
        match = _LABEL_LINE.match(line)
        if not match:
            continue
        field = _TEXT_FIELDS.get(match.group(1).lower())
        if field and field not in values:
            values[field] = match.group(2)
    if "number" not in values:
        return None
    values["valid"] = str(values.get("valid", "")).lower() in ("true", "yes")
    return PhoneLookupOutput(**values).model_dump(by_alias=True, exclude_none=True)


def parse_output(raw: str) -> ParseOutcome:
    structured = _parse_structured(raw)
    if structured is not None:
        return ParseOutcome(structured)
    fallback = _parse_text(raw)
    if fallback is not None:
        return ParseOutcome(fallback, ParserStrategy.TEXT_FALLBACK)
    raise ParseError("Unrecognised phoneinfoga output", details={"sample": raw[:200]})


DEFINITION = ToolDefinition(
    metadata=METADATA,
    input_model=PhoneLookupInput,
    build_command=build_command,
    parse_output=parse_output,
)
