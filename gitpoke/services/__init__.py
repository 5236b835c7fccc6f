"""Services Layer — the imperative shell around the functional core.

Invariants:
    - Services orchestrate IO (store, gateways, repository) around pure core calls
    - No domain rule lives here; decisions come from core/

Design Decisions:
    - Impureim sandwich: gather inputs → call core → apply effects (ADR: ExMA)
"""
