"""Shared state of the local-engine server, built once at startup."""

from dataclasses import dataclass

import httpx

from course_ai_proxy.config import Settings
from course_ai_proxy.local_engine.gate import AdmissionGate
from course_ai_proxy.local_engine.ollama import OllamaClient
from course_ai_proxy.local_engine.selection import ModelSelector, WarmupCoordinator
from course_ai_proxy.local_engine.stats import EngineStats


@dataclass
class EngineRuntime:
    engine: OllamaClient
    gate: AdmissionGate
    selector: ModelSelector
    warmup: WarmupCoordinator
    stats: EngineStats


def create_runtime(settings: Settings, client: httpx.AsyncClient) -> EngineRuntime:
    engine = OllamaClient(client, settings.ollama_url)
    return EngineRuntime(
        engine=engine,
        gate=AdmissionGate(
            max_concurrent=settings.local_max_concurrent,
            mode=settings.local_admission_mode,
            queue_timeout=settings.local_queue_timeout,
        ),
        selector=ModelSelector(settings.local_default_model),
        warmup=WarmupCoordinator(engine, timeout=settings.warmup_timeout),
        stats=EngineStats(),
    )
