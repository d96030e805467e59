"""
Shared FastAPI dependencies.
Overridden in tests through app.dependency_overrides.
"""
from functools import lru_cache

from labctl.core.config import LabSettings, load_settings
from labctl.services.diagnostic_store import DiagnosticStore


@lru_cache(maxsize=1)
def get_settings() -> LabSettings:
    return load_settings()


def get_store() -> DiagnosticStore:
    settings = get_settings()
    return DiagnosticStore(settings.errors_dir, settings.report_retention_days)
