"""Typed course catalogue structures."""

from __future__ import annotations

import msgspec


class Deliverable(msgspec.Struct, kw_only=True, frozen=True):
    """A gradable assignment unit.

    Attributes
    ----------
    id : str
        Deliverable identifier as written in feedback requests (``d1``).
    feedback_interval_minutes : int, optional
        Minimum minutes between feedback posts for one user. Falls back to the
        course value, then to the instance default.
    test_on_push : bool
        Whether pushes automatically enqueue a test for this deliverable.

    """

    id: str
    feedback_interval_minutes: int | None = None
    test_on_push: bool = True


class Course(msgspec.Struct, kw_only=True, frozen=True):
    """Course grouping deliverables.

    Attributes
    ----------
    id : str
        Course identifier.
    repo_pattern : str, optional
        Glob matched against repository names to route events to this course.
    default_deliverable : str, optional
        Deliverable used when a feedback request does not name one.
    feedback_interval_minutes : int, optional
        Course-wide minimum interval between feedback posts.
    deliverables : list[Deliverable]
        Deliverables offered by the course.

    """

    id: str
    repo_pattern: str | None = None
    default_deliverable: str | None = None
    feedback_interval_minutes: int | None = None
    deliverables: list[Deliverable] = msgspec.field(default_factory=list)

    def deliverable(self, deliv_id: str) -> Deliverable | None:
        """Return the deliverable named ``deliv_id`` if the course offers it."""
        return next((d for d in self.deliverables if d.id == deliv_id), None)


class CourseCatalogue(msgspec.Struct, kw_only=True, frozen=True):
    """Root catalogue document."""

    courses: list[Course] = msgspec.field(default_factory=list)
    default_course: str | None = None

    def course(self, course_id: str) -> Course | None:
        """Return the course named ``course_id``."""
        return next((c for c in self.courses if c.id == course_id), None)
