"""Map source files onto the project whose daemon should answer for them."""

import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Normalize a path into the form used as a project key."""
    return os.path.normcase(os.path.normpath(os.path.abspath(os.fspath(path))))


@dataclass(frozen=True, slots=True)
class ProjectFile:
    """A project entry file, relative to the directory the daemon runs in."""

    root: Path
    file: str

    @property
    def path(self) -> Path:
        return self.root / self.file

    @property
    def key(self) -> str:
        """Normalized absolute path identifying this project's daemon."""
        return normalize_path(self.path)

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ProjectFile":
        absolute = Path(os.path.abspath(os.fspath(path)))
        return cls(root=absolute.parent, file=absolute.name)


class ProjectResolver:
    """Resolve files to projects.

    With configured projects ("project mode"), a file belongs to the first
    project whose directory contains it, falling back to the first project.
    Without them, every file is its own project.
    """

    def __init__(self, projects: Iterable[str | os.PathLike[str]] = ()):
        self._projects = [ProjectFile.from_path(p) for p in projects]

    @property
    def project_mode(self) -> bool:
        return bool(self._projects)

    @property
    def projects(self) -> list[ProjectFile]:
        return list(self._projects)

    def resolve(self, filename: str | os.PathLike[str]) -> ProjectFile:
        if not self._projects:
            return ProjectFile.from_path(filename)

        target = normalize_path(filename)
        for project in self._projects:
            root = normalize_path(project.root)
            if target == root or target.startswith(root.rstrip(os.sep) + os.sep):
                return project
        return self._projects[0]
