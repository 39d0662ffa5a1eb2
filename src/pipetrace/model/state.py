"""
Project State (Data Model)
==========================
This module defines the central data structure for an open survey project.

Why is this file needed?
------------------------
1. State Management: It holds the project metadata and the route in one place.
2. Persistence: This object is what gets serialized when saving a project.
3. Decoupling: Views read from the route; controllers write to it.

Classes:
    ProjectMetadata: Free-text site information.
    ProjectState: The main container class.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from pipetrace.model.route import RouteModel

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProjectMetadata:
    site_name: str = ""
    operator: str = ""
    pipe_type: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"siteName": self.site_name, "operator": self.operator, "pipeType": self.pipe_type}

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> ProjectMetadata:
        data = data or {}
        return ProjectMetadata(
            site_name=str(data.get("siteName") or ""),
            operator=str(data.get("operator") or ""),
            pipe_type=str(data.get("pipeType") or ""),
        )


@dataclass
class ProjectState:
    """
    Holds the entire state of the open project.
    Pass this instance to your controllers.
    """
    project_name: str = "Untitled Project"
    filepath: Optional[str] = None
    metadata: ProjectMetadata = field(default_factory=ProjectMetadata)
    created_at: str = field(default_factory=_now_iso)
    updated_at: Optional[str] = None
    route: RouteModel = field(default_factory=RouteModel)

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def reset(self) -> None:
        """Clear all data for a new project"""
        self.project_name = "Untitled Project"
        self.filepath = None
        self.metadata = ProjectMetadata()
        self.created_at = _now_iso()
        self.updated_at = None
        self.route.clear()
        logger.info("Project state has been reset.")
