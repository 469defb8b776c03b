"""Tests for project persistence."""

import pytest

from src.factory.errors import UnknownProject
from src.factory.models import VideoVariant
from src.factory.project import Project, ProjectStatus
from src.factory.render import VariantStatus
from src.factory.repository import ProjectRepository
from src.factory.stages import Stage


class TestProjectRepository:
    """Tests for the ProjectRepository class."""

    def test_save_and_load(self, tmp_path, store_through):
        repository = ProjectRepository(tmp_path)
        project = Project.create(title="Rome", url="https://www.youtube.com/watch?v=abc", project_id="proj_rome")
        project.artifacts = store_through(Stage.RENDER)
        project.current_stage = Stage.PUBLISH
        project.approvals.approve(Stage.SCRIPT, by="alice")
        project.variant_slots[VideoVariant.BASIC].start()
        project.record("advance", Stage.RENDER)

        path = repository.save(project)
        loaded = repository.load("proj_rome")

        assert path == tmp_path / "proj_rome" / "project.json"
        assert loaded.title == "Rome"
        assert loaded.source.url == "https://www.youtube.com/watch?v=abc"
        assert loaded.current_stage is Stage.PUBLISH
        assert loaded.artifacts.audio == project.artifacts.audio
        assert loaded.approvals.is_approved(Stage.SCRIPT)
        assert loaded.history[-1].action == "advance"
        assert loaded.status is ProjectStatus.ACTIVE
        # A render that was running when saved cannot still be running
        assert loaded.variant_slots[VideoVariant.BASIC].status is VariantStatus.FAILED

    def test_load_unknown_project(self, tmp_path):
        with pytest.raises(UnknownProject, match="proj_missing"):
            ProjectRepository(tmp_path).load("proj_missing")

    def test_list_projects_skips_broken_files(self, tmp_path):
        repository = ProjectRepository(tmp_path)
        repository.save(Project.create(title="Rome", project_id="proj_a"))
        repository.save(Project.create(title="Carthage", project_id="proj_b"))
        broken = tmp_path / "proj_c" / "project.json"
        broken.parent.mkdir()
        broken.write_text("{not json")

        projects = repository.list_projects()

        assert repository.list_ids() == ["proj_a", "proj_b", "proj_c"]
        assert [p.title for p in projects] == ["Rome", "Carthage"]

    def test_missing_directory_lists_nothing(self, tmp_path):
        assert ProjectRepository(tmp_path / "nowhere").list_projects() == []


class TestProjectCreate:
    """Tests for Project.create."""

    def test_requires_some_source(self):
        with pytest.raises(ValueError):
            Project.create()

    def test_generated_id(self):
        project = Project.create(title="Rome")

        assert project.id.startswith("proj_")
        assert project.current_stage is Stage.SCRIPT
        assert set(project.variant_slots) == set(VideoVariant)
