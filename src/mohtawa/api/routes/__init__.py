"""API route modules."""

from mohtawa.api.routes import health, projects, renders, runs, storage

__all__ = ["health", "projects", "renders", "runs", "storage"]
