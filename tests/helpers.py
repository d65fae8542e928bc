"""Builders and polling helpers shared by the tests."""

import asyncio
from typing import Any, Iterable

from apps.dispatcher.manager import QueueManager
from utils.schemas import BackoffPolicy, JobDescriptor, QueueDefinition

TERMINAL = ("completed", "failed")

INVENTORY_HEADERS = [
    "Usuario",
    "Proveedor",
    "Sitio",
    "Atención",
    "Marca CPU",
    "Modelo CPU",
    "Velocidad CPU",
    "Memoria RAM",
    "Tipo Disco",
    "Capacidad Disco",
    "Sistema Operativo",
    "Versión SO",
    "Navegador",
    "Versión Navegador",
    "Marca Antivirus",
    "Modelo Antivirus",
    "Marca Headset",
    "Modelo Headset",
    "Proveedor Internet",
    "Tipo Conexión",
    "Velocidad Bajada",
    "Velocidad Subida",
]


def inventory_row(**overrides: Any) -> list[Any]:
    """A fully compliant on-site row; keyword overrides use the header text."""
    values = {
        "Usuario": "U001",
        "Proveedor": "Acme BPO",
        "Sitio": "Bogotá",
        "Atención": "On Site",
        "Marca CPU": "Intel",
        "Modelo CPU": "Core i7-1165G7",
        "Velocidad CPU": "2.8 GHz",
        "Memoria RAM": "32GB",
        "Tipo Disco": "SSD",
        "Capacidad Disco": "1TB",
        "Sistema Operativo": "Windows 11 Pro",
        "Versión SO": "23H2",
        "Navegador": "Google Chrome",
        "Versión Navegador": "120.0",
        "Marca Antivirus": "ESET",
        "Modelo Antivirus": "Endpoint Security",
        "Marca Headset": "Jabra",
        "Modelo Headset": "Evolve2 40",
        "Proveedor Internet": "Claro",
        "Tipo Conexión": "Fibra Óptica",
        "Velocidad Bajada": "300 Mbps",
        "Velocidad Subida": "100 Mbps",
    }
    values.update(overrides)
    return [values[header] for header in INVENTORY_HEADERS]


def fast_queue(name: str = "work", **overrides: Any) -> QueueDefinition:
    """Queue definition with millisecond backoff for tests."""
    values: dict[str, Any] = {
        "name": name,
        "concurrency": 2,
        "attempts": 3,
        "backoff": BackoffPolicy(type="fixed", delay_ms=10),
        "timeout_ms": 2000,
        "remove_on_complete": 100,
        "remove_on_fail": 100,
    }
    values.update(overrides)
    return QueueDefinition(**values)


async def wait_for_job(
    manager: QueueManager,
    queue: str,
    job_id: str,
    statuses: Iterable[str] = TERMINAL,
    timeout: float = 5.0,
) -> JobDescriptor:
    """Poll until the job reaches one of `statuses`."""
    wanted = set(statuses)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        job = await manager.get_job(queue, job_id)
        if job is not None and job.status.value in wanted:
            return job
        if loop.time() > deadline:
            state = job.status.value if job else "missing"
            raise AssertionError(f"Job {job_id} still {state} after {timeout}s")
        await asyncio.sleep(0.01)
