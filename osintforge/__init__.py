# ============================================================================
# osintforge/__init__.py
# Package Marker for the OSINT Job Pipeline
# ============================================================================
#
# PURPOSE:
# Runs OSINT lookups (username search, domain harvest, phone lookup, image
# metadata, email breach check) as sandboxed jobs and notifies subscribers
# through signed webhooks when they finish.
#
# LAYOUT:
# - base/: configuration and time helpers everything else depends on
# - toolkit/: tool contract, registry and the five concrete tools
# - engine/: sandboxed process runner, job lifecycle, worker pool
# - data/: aiosqlite-backed job and webhook stores
# - webhooks/: payload signing, delivery, retry scheduling
# - server/: thin FastAPI intake
#
# ============================================================================

__version__ = "0.1.0"
