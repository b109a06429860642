"""API routers for the taskboard core."""

from . import invitations, organizations, projects, tasks

__all__ = ["invitations", "organizations", "projects", "tasks"]
