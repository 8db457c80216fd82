"""Persistence layer: aiosqlite database wrapper plus job and webhook stores."""
