"""Run monitor — read-only projection over the Run Ledger.

Modules
-------
projection
    ``RunProjection`` replays ledger entries into a frozen ``RunSnapshot``.
renderer
    ``RunRenderer`` turns snapshots and promotion records into Rich output.
"""
