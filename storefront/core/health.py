"""
Health checks for the storefront service.

Liveness is a constant answer; readiness looks at the stores the storage
layer depends on. The local store is the only hard dependency: the remote
backend and redis can fail without taking the service down, so they only
downgrade readiness to ``warn``.
"""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from typing import Dict, Any
from datetime import datetime, timezone
from enum import Enum
import os
import time
import psutil
import redis
from storefront.core.logging_config import get_logger
import storefront.infrastructure.remote as _remote

logger = get_logger(__name__)

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

class ServiceHealth:
    def __init__(self, service_name: str, version: str = "1.0.0"):
        self.service_name = service_name
        self.version = version
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        def health_check(request: Request) -> Dict[str, Any]:
            storage = request.app.state.storage
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "remoteConfigured": storage.is_remote_configured(),
                "timestamp": _timestamp(),
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness(request: Request) -> JSONResponse:
            checks = self.perform_readiness_checks(request.app.state.storage)
            overall_status = self.calculate_overall_status(checks)
            status_code = (
                status.HTTP_503_SERVICE_UNAVAILABLE
                if overall_status == HealthStatus.FAIL
                else status.HTTP_200_OK
            )
            return JSONResponse(
                status_code=status_code,
                content={
                    "status": overall_status,
                    "version": self.version,
                    "serviceId": self.service_name,
                    "checks": checks,
                    "timestamp": _timestamp(),
                },
            )

        @router.get("/metrics")
        def metrics(request: Request) -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "cache_entries": len(request.app.state.storage.cache),
                "timestamp": _timestamp(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads(),
                },
            }

        return router

    def perform_readiness_checks(self, storage) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        checks = {"storage:local": self._check_local(storage)}
        if storage.is_remote_configured():
            checks["storage:remote"] = self._check_remote(storage)
        if storage.cache.redis_client is not None:
            checks["cache:redis"] = self._check_redis(storage.cache.redis_client)
        checks["system:disk_space"] = self._check_disk_space()
        checks["system:memory"] = self._check_memory()
        return checks

    def _timed(self, probe) -> str:
        start_time = time.time()
        probe()
        return f"{(time.time() - start_time) * 1000:.2f}ms"

    def _check_local(self, storage) -> Dict[str, Any]:
        try:
            observed = self._timed(storage.local.ping)
        except Exception as e:
            logger.error(f"Local store health check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "output": str(e), "time": _timestamp()}
        return {"status": HealthStatus.PASS, "componentType": "datastore", "observedValue": observed, "time": _timestamp()}

    def _check_remote(self, storage) -> Dict[str, Any]:
        try:
            observed = self._timed(storage.remote.ping)
        except _remote.RemoteBackendError as e:
            # Reads and writes fall back to the local store
            return {"status": HealthStatus.WARN, "componentType": "datastore", "output": str(e), "time": _timestamp()}
        return {"status": HealthStatus.PASS, "componentType": "datastore", "observedValue": observed, "time": _timestamp()}

    def _check_redis(self, client: redis.Redis) -> Dict[str, Any]:
        try:
            observed = self._timed(client.ping)
        except redis.RedisError as e:
            return {"status": HealthStatus.WARN, "componentType": "cache", "output": str(e), "time": _timestamp()}
        return {"status": HealthStatus.PASS, "componentType": "cache", "observedValue": observed, "time": _timestamp()}

    def _check_disk_space(self) -> Dict[str, Any]:
        free_gb = psutil.disk_usage('/').free / (1024 ** 3)
        if free_gb < 1:
            status_val = HealthStatus.FAIL
        elif free_gb < 5:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {"status": status_val, "componentType": "system", "observedValue": f"{free_gb:.2f}", "observedUnit": "GB", "time": _timestamp()}

    def _check_memory(self) -> Dict[str, Any]:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        if available_mb < 100:
            status_val = HealthStatus.FAIL
        elif available_mb < 500:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {"status": status_val, "componentType": "system", "observedValue": f"{available_mb:.2f}", "observedUnit": "MB", "time": _timestamp()}

    def calculate_overall_status(self, checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
