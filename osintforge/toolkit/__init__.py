# ============================================================================
# osintforge/toolkit/__init__.py
# Toolkit Package - OSINT Tool Integration Layer
# ============================================================================
#
# PURPOSE:
# Gives the worker pool one interface for running any OSINT tool. Each tool is
# a ToolDefinition value (metadata, input schema, argv builder, output parser)
# wrapped by SandboxedToolExecutor; the registry maps names to executors.
#
# KEY MODULES:
# - models.py: ToolMetadata, ProgressEvent, ExecutionOptions, ParsedResult
# - executor.py: ToolExecutor protocol + SandboxedToolExecutor
# - registry.py: ToolRegistry and build_default_registry()
# - sanitize.py: argument scrubbing before anything reaches argv
# - parsing.py: JSON extraction helpers shared by the tool parsers
# - tools/: the five concrete tool definitions
#
# ============================================================================
