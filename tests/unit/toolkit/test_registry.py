import logging

import pytest

from osintforge.base.config import SandboxConfig
from osintforge.errors import ErrorCode, ValidationError
from osintforge.toolkit.executor import SandboxedToolExecutor
from osintforge.toolkit.models import ToolCategory
from osintforge.toolkit.registry import ToolRegistry, build_default_registry
from osintforge.toolkit.tools import PHONE_LOOKUP, USERNAME_SEARCH


def test_default_registry_has_every_tool(make_sandbox):
    registry = build_default_registry(make_sandbox())
    assert registry.names() == [
        "domain-harvest",
        "email-breach-check",
        "image-metadata",
        "phone-lookup",
        "username-search",
    ]
    assert len(registry) == 5
    assert "phone-lookup" in registry


def test_max_timeout_comes_from_config(make_sandbox):
    registry = build_default_registry(make_sandbox(), SandboxConfig(max_timeout_ms=1234))
    assert registry.get("username-search").max_timeout_ms == 1234


def test_require_unknown_tool(make_sandbox):
    registry = build_default_registry(make_sandbox())
    with pytest.raises(ValidationError) as exc_info:
        registry.require("nmap")
    assert exc_info.value.code is ErrorCode.TOOL_NOT_FOUND
    assert exc_info.value.http_status == 400
    assert "username-search" in exc_info.value.errors[0]["message"]


def test_register_overwrites_with_warning(make_sandbox, caplog):
    sandbox = make_sandbox()
    registry = ToolRegistry([SandboxedToolExecutor(USERNAME_SEARCH, sandbox)])
    replacement = SandboxedToolExecutor(USERNAME_SEARCH, sandbox)
    with caplog.at_level(logging.WARNING):
        registry.register(replacement)
    assert registry.get("username-search") is replacement
    assert "already registered" in caplog.text


def test_unregister_and_category_lookup(make_sandbox):
    sandbox = make_sandbox()
    registry = ToolRegistry(SandboxedToolExecutor(d, sandbox) for d in (USERNAME_SEARCH, PHONE_LOOKUP))
    assert [m.name for m in registry.by_category(ToolCategory.PHONE)] == ["phone-lookup"]
    assert registry.unregister("phone-lookup") is True
    assert registry.unregister("phone-lookup") is False
    assert registry.get("phone-lookup") is None


def test_metadata_serializes(make_sandbox):
    registry = build_default_registry(make_sandbox())
    meta = registry.get("image-metadata").metadata.to_dict()
    assert meta["category"] == "image"
    assert meta["sandbox"] == {"memory": "128m", "cpus": "0.5", "network": "none"}
    assert meta["rate_limit"] == {"max_requests": 20, "window_ms": 60_000}
    assert meta["command"] == ["exiftool"]
