"""
EXIF/IPTC/XMP metadata extraction for an image (exiftool).

The container runs with networking disabled. Only files inside the configured
uploads directory are accepted; the single file is bind-mounted read-only at
/data/<name> and the tool sees nothing else of the host.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath, Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from osintforge.engine.sandbox import Mount
from osintforge.errors import ParseError, ValidationError
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
from osintforge.toolkit.sanitize import reject_metacharacters, sanitize_argument

CONTAINER_DATA_DIR = "/data"


class ImageMetadataInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_path: str = Field(min_length=1, alias="imagePath")
    extract_gps: bool = Field(default=True, alias="extractGPS")
    extract_all: bool = Field(default=True, alias="extractAll")


class GpsCoordinates(BaseModel):
    latitude: float
    longitude: float
    altitude: Optional[str] = None


class ImageMetadataOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_size: Optional[str] = Field(default=None, alias="fileSize")
    file_type: Optional[str] = Field(default=None, alias="fileType")
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    image_width: Optional[int] = Field(default=None, alias="imageWidth")
    image_height: Optional[int] = Field(default=None, alias="imageHeight")
    camera_make: Optional[str] = Field(default=None, alias="cameraMake")
    camera_model: Optional[str] = Field(default=None, alias="cameraModel")
    create_date: Optional[str] = Field(default=None, alias="createDate")
    modify_date: Optional[str] = Field(default=None, alias="modifyDate")
    software: Optional[str] = None
    gps: Optional[GpsCoordinates] = None
    tags: Dict[str, Any] = {}


METADATA = ToolMetadata(
    name="image-metadata",
    display_name="Image Metadata",
    description="Read EXIF, GPS and camera metadata embedded in an image file",
    category=ToolCategory.IMAGE,
    sandbox_image="exiftool:latest",
    command=("exiftool",),
    estimated_time="5-15 seconds",
    rate_limit=RateLimitSpec(max_requests=20, window_ms=60_000),
    default_timeout_ms=60_000,
    sandbox=SandboxProfile(memory="128m", cpus="0.5", network=NetworkMode.NONE),
)


def container_path(params: ImageMetadataInput) -> str:
    return str(PurePosixPath(CONTAINER_DATA_DIR) / Path(params.image_path).name)


def _invalid_path(image_path: str, message: str) -> ValidationError:
    return ValidationError(
        f"Invalid imagePath {image_path!r}: {message}",
        errors=[{"field": "imagePath", "message": message}],
    )


def resolve_upload(image_path: str, uploads_dir: Path) -> Path:
    """
    Resolve a user-supplied image path to a regular file inside ``uploads_dir``.

    Relative paths are taken from the uploads root. Symlinks are resolved before
    the containment check, so a link pointing outside the root is rejected like
    any other escape.
    """
    reject_metacharacters([image_path], field="imagePath")
    if sanitize_argument(image_path) != image_path:
        raise _invalid_path(image_path, "contains control characters")

    root = Path(uploads_dir).expanduser().resolve()
    candidate = Path(image_path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()

    if resolved == root or root not in resolved.parents:
        raise _invalid_path(image_path, "must refer to a file inside the uploads directory")
    # docker -v splits on colons
    if ":" in image_path or ":" in str(resolved):
        raise _invalid_path(image_path, "must not contain ':'")
    # A missing bind source would be created by docker as an empty directory
    if not resolved.is_file():
        raise _invalid_path(image_path, "file does not exist")
    return resolved


def mounts(params: ImageMetadataInput, uploads_dir: Path) -> List[Mount]:
    host_file = resolve_upload(params.image_path, uploads_dir)
    return [Mount(source=str(host_file), target=container_path(params), read_only=True)]


def build_command(params: ImageMetadataInput) -> List[str]:
    args = ["-json"]
    if params.extract_all:
        args.extend(["-a", "-G1"])
    if params.extract_gps:
        args.append("-gps:all")
    args.append(container_path(params))
    return args


_DMS = re.compile(r"(\d+(?:\.\d+)?)\s*deg\s*(\d+(?:\.\d+)?)'\s*(\d+(?:\.\d+)?)\"?\s*([NSEW])?")


def dms_to_decimal(value: Any, ref: Optional[str] = None) -> Optional[float]:
    """Convert exiftool's ``51 deg 30' 26.46" N`` form (or a bare number) to decimal degrees."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        decimal = float(value)
    else:
        match = _DMS.search(str(value))
        if match:
            degrees, minutes, seconds, hemisphere = match.groups()
            decimal = float(degrees) + float(minutes) / 60 + float(seconds) / 3600
            ref = ref or hemisphere
        else:
            try:
                decimal = float(str(value).strip())
            except ValueError:
                return None
    if ref and str(ref).strip().upper()[:1] in ("S", "W"):
        decimal = -abs(decimal)
    return round(decimal, 6)


def _tag(data: Dict[str, Any], name: str) -> Any:
    """Look up a tag with or without the -G1 group prefix (``EXIF:Make`` vs ``Make``)."""
    if name in data:
        return data[name]
    for key, value in data.items():
        if key.split(":")[-1] == name:
            return value
    return None


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _build_output(data: Dict[str, Any]) -> dict:
    gps = None
    latitude = dms_to_decimal(_tag(data, "GPSLatitude"), _tag(data, "GPSLatitudeRef"))
    longitude = dms_to_decimal(_tag(data, "GPSLongitude"), _tag(data, "GPSLongitudeRef"))
    if latitude is not None and longitude is not None:
        gps = GpsCoordinates(latitude=latitude, longitude=longitude, altitude=_as_str(_tag(data, "GPSAltitude")))

    output = ImageMetadataOutput(
        file_name=_as_str(_tag(data, "FileName")),
        file_size=_as_str(_tag(data, "FileSize")),
        file_type=_as_str(_tag(data, "FileType")),
        mime_type=_as_str(_tag(data, "MIMEType")),
        image_width=_to_int(_tag(data, "ImageWidth")),
        image_height=_to_int(_tag(data, "ImageHeight")),
        camera_make=_as_str(_tag(data, "Make")),
        camera_model=_as_str(_tag(data, "Model")),
        create_date=_as_str(_tag(data, "CreateDate")),
        modify_date=_as_str(_tag(data, "ModifyDate")),
        software=_as_str(_tag(data, "Software")),
        gps=gps,
        tags=data,
    )
    return output.model_dump(by_alias=True, exclude_none=True)


def _parse_structured(raw: str) -> Optional[dict]:
    data = extract_json(raw, "[")
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None
    return _build_output(data[0])


_TAG_LINE = re.compile(r"^(?:\[[^\]]+\]\s*)?([^:]+?)\s+:\s(.*)$")


def _parse_text(raw: str) -> Optional[dict]:
    tags: Dict[str, Any] = {}
    for line in raw.splitlines():
        match = _TAG_LINE.match(line.rstrip())
        if match:
            key = match.group(1).replace(" ", "").replace("/", "")
            tags[key] = match.group(2).strip()
    if not tags:
        return None
    return _build_output(tags)


def parse_output(raw: str) -> ParseOutcome:
    structured = _parse_structured(raw)
    if structured is not None:
        return ParseOutcome(structured)
    fallback = _parse_text(raw)
    if fallback is not None:
        return ParseOutcome(fallback, ParserStrategy.TEXT_FALLBACK)
    raise ParseError("Unrecognised exiftool output", details={"sample": raw[:200]})


DEFINITION = ToolDefinition(
    metadata=METADATA,
    input_model=ImageMetadataInput,
    build_command=build_command,
    parse_output=parse_output,
    mounts=mounts,
)
