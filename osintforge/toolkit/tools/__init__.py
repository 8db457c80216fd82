"""Concrete tool definitions. Each module exposes a module-level ``DEFINITION``."""

from osintforge.toolkit.tools.domain_harvest import DEFINITION as DOMAIN_HARVEST
from osintforge.toolkit.tools.email_check import DEFINITION as EMAIL_BREACH_CHECK
from osintforge.toolkit.tools.image_metadata import DEFINITION as IMAGE_METADATA
from osintforge.toolkit.tools.phone_lookup import DEFINITION as PHONE_LOOKUP
from osintforge.toolkit.tools.username_search import DEFINITION as USERNAME_SEARCH

ALL_DEFINITIONS = (
    USERNAME_SEARCH,
    DOMAIN_HARVEST,
    PHONE_LOOKUP,
    IMAGE_METADATA,
    EMAIL_BREACH_CHECK,
)

__all__ = [
    "ALL_DEFINITIONS",
    "USERNAME_SEARCH",
    "DOMAIN_HARVEST",
    "PHONE_LOOKUP",
    "IMAGE_METADATA",
    "EMAIL_BREACH_CHECK",
]
