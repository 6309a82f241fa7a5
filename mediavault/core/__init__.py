"""
Core business logic for media storage.

This module is framework-agnostic - it doesn't import FastAPI, Snowflake,
or any provider SDK. Adapters and repositories are reached only through
the protocols defined here, so the orchestration logic can be tested with
in-memory implementations.
"""
