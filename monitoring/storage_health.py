"""
Monitoring - Storage Sweep.

Checks the supervisor's own storage:

- data_dir readable and writable (else ERROR)
- required sub-directories present (missing -> WARNING, re-created)
- database files non-empty (empty -> CRITICAL)
- database connectivity, SELECT 1 (failure -> ERROR)
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

from sqlalchemy.exc import SQLAlchemyError

from monitoring.config import SupervisorConfig
from monitoring.models import AlertSeverity
from storage.store import MonitoringStore


logger = logging.getLogger(__name__)


class StorageMonitor:
    """One storage sweep per call to sweep()."""

    def __init__(self, config: SupervisorConfig, store: MonitoringStore) -> None:
        self._config = config
        self._store = store

    def _database_files(self) -> List[Path]:
        files = {p for p in Path(self._config.data_dir).glob("*.db")}
        path = self._store.database.database_path
        if path:
            files.add(Path(path))
        return sorted(f for f in files if f.exists())

    def _missing_directories(self) -> List[str]:
        data_dir = Path(self._config.data_dir)
        missing = []
        for name in self._config.required_directories:
            path = data_dir / name
            if not path.is_dir():
                path.mkdir(parents=True, exist_ok=True)
                missing.append(name)
        return missing

    async def sweep(self, alerts: Any) -> Dict[str, Any]:
        data_dir = Path(self._config.data_dir)
        result: Dict[str, Any] = {"accessible": True, "missing": [], "empty_databases": [], "database_ok": True}

        accessible = await asyncio.to_thread(
            lambda: data_dir.is_dir() and os.access(data_dir, os.R_OK | os.W_OK)
        )
        if not accessible:
            result["accessible"] = False
            await alerts.raise_alert(
                AlertSeverity.ERROR,
                "storage",
                f"Storage health check failed: {data_dir} is not readable and writable",
                alert_type="storage",
            )
        else:
            try:
                result["missing"] = await asyncio.to_thread(self._missing_directories)
            except OSError as e:
                await alerts.raise_alert(
                    AlertSeverity.ERROR, "storage", f"Storage health check failed: {e}", alert_type="storage"
                )
            for name in result["missing"]:
                await alerts.raise_alert(
                    AlertSeverity.WARNING, "storage", f"Missing directory: {name}", alert_type="storage"
                )

        for db_file in await asyncio.to_thread(self._database_files):
            if db_file.stat().st_size == 0:
                result["empty_databases"].append(db_file.name)
                await alerts.raise_alert(
                    AlertSeverity.CRITICAL, "database", f"Empty database file: {db_file.name}", alert_type="storage"
                )

        try:
            await self._store.ping()
        except SQLAlchemyError as e:
            result["database_ok"] = False
            await alerts.raise_alert(
                AlertSeverity.ERROR, "database", f"Database health check failed: {e}", alert_type="storage"
            )

        logger.debug(f"Storage sweep: {result}")
        return result
