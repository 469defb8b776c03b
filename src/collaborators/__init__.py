"""External collaborators consumed by the generation pipeline."""

from src.collaborators.base import Collaborator, Collaborators, build_collaborators
from src.collaborators.http import HttpCollaborator, http_collaborators
from src.collaborators.mock import MockCollaborator, mock_collaborators

__all__ = [
    "Collaborator",
    "Collaborators",
    "build_collaborators",
    "HttpCollaborator",
    "http_collaborators",
    "MockCollaborator",
    "mock_collaborators",
]
