"""Pydantic Schemas — validation of payloads crossing the system boundary.

Invariants:
    - Schemas validate upstream API responses before they reach core/

Design Decisions:
    - Separate from models: schemas are wire contracts, models are persistence (ADR: DDD boundary)
"""
