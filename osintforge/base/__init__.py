"""Foundational pieces shared by every other package: configuration and clocks."""
