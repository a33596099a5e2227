"""Companion server for a locally hosted inference engine (Ollama).

Bounds concurrent generations with an admission gate, streams tokens
with timing metadata, and supports warm-up and model hot-switching.
Start it with ``python -m course_ai_proxy.local_engine``.
"""
