"""Sync pipeline.

Modules:
    orchestrator — One sync run: fetch, format, save, report
    file_manager — Deterministic note paths and writes
    outputs      — Step outputs (console or GitHub Actions)
"""
