"""Multi-tenant project-management core: organizations, projects, boards and tasks."""

__version__ = "1.0.0"
