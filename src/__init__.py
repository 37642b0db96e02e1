# src/__init__.py — v1
"""frameagent: plan-execute-repair agent for a multi-stage video pipeline."""
