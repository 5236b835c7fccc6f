"""Core Layer — pure domain logic, no IO, no async, no store access.

Invariants:
    - No module in core/ imports from services/, infrastructure/, db/ or models/
    - All functions are pure and deterministic; `now` is always passed in

Design Decisions:
    - Functional core separated from imperative shell (ADR: ExMA impureim sandwich)
"""
