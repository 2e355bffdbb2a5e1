"""Run monitor: read-only projection over the Run Ledger.

Modules
-------
projection
    ``RunProjection`` replays the ledger into frozen ``RunSnapshot`` models.
renderer
    ``RunRenderer`` turns snapshots, run reports and plans into Rich
    renderables for terminal display.
"""
