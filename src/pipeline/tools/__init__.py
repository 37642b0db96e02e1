# src/pipeline/tools/__init__.py — v1
