from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from mediaapp.core.admission import AdmissionGate
from mediaapp.core.config import Settings
from mediaapp.core.queue import WorkQueue
from mediaapp.core.runtime import Runtime
from mediaapp.domain import PhotoStore
from mediaapp.services.ingestion import IngestionEngine


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if not isinstance(runtime, Runtime):  # pragma: no cover - lifespan not run
        raise RuntimeError("runtime_not_configured")
    return runtime


def get_app_settings(runtime: Runtime = Depends(get_runtime)) -> Settings:
    return runtime.settings


def get_engine(runtime: Runtime = Depends(get_runtime)) -> IngestionEngine:
    return runtime.engine


def get_store(runtime: Runtime = Depends(get_runtime)) -> PhotoStore:
    return runtime.store


def get_queue(runtime: Runtime = Depends(get_runtime)) -> WorkQueue:
    return runtime.queue


def get_gate(runtime: Runtime = Depends(get_runtime)) -> AdmissionGate:
    return runtime.gate


EngineDependency = Annotated[IngestionEngine, Depends(get_engine)]
StoreDependency = Annotated[PhotoStore, Depends(get_store)]
QueueDependency = Annotated[WorkQueue, Depends(get_queue)]
GateDependency = Annotated[AdmissionGate, Depends(get_gate)]
SettingsDependency = Annotated[Settings, Depends(get_app_settings)]


__all__ = [
    "get_runtime",
    "get_app_settings",
    "get_engine",
    "get_store",
    "get_queue",
    "get_gate",
    "EngineDependency",
    "StoreDependency",
    "QueueDependency",
    "GateDependency",
    "SettingsDependency",
]
