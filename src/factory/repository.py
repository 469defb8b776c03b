"""JSON persistence of projects.

Layout:
    projects/
        <project_id>/
            project.json
"""

import json
from pathlib import Path

from src.factory.errors import UnknownProject
from src.factory.project import Project

PROJECT_FILE = "project.json"


class ProjectRepository:
    """Stores each project as `<projects_dir>/<id>/project.json`."""

    def __init__(self, projects_dir: Path | str = "projects"):
        """Initialize the repository.

        Args:
            projects_dir: Parent directory for project folders.
        """
        self.projects_dir = Path(projects_dir)

    def path_for(self, project_id: str) -> Path:
        return self.projects_dir / project_id / PROJECT_FILE

    def exists(self, project_id: str) -> bool:
        return self.path_for(project_id).exists()

    def save(self, project: Project) -> Path:
        """Write the project and return the file path."""
        path = self.path_for(project.id)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(project.to_dict(), f, indent=2)
        tmp_path.replace(path)
        return path

    def load(self, project_id: str) -> Project:
        """Load a project by ID.

        Raises:
            UnknownProject: If no project file exists for the ID.
        """
        path = self.path_for(project_id)
        if not path.exists():
            raise UnknownProject(project_id)

        with open(path) as f:
            data = json.load(f)
        return Project.from_dict(data)

    def list_ids(self) -> list[str]:
        """IDs of all stored projects, sorted."""
        if not self.projects_dir.exists():
            return []
        return sorted(
            subdir.name
            for subdir in self.projects_dir.iterdir()
            if subdir.is_dir() and (subdir / PROJECT_FILE).exists()
        )

    def list_projects(self) -> list[Project]:
        """Load every readable project. Unreadable files are reported and skipped."""
        projects = []
        for project_id in self.list_ids():
            try:
                projects.append(self.load(project_id))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                print(f"Warning: Failed to load project {project_id}: {e}")
        return projects
