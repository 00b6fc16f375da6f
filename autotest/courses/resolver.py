"""Resolve which course and deliverables an event refers to."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import fnmatch
import typing as typ

if typ.TYPE_CHECKING:
    from autotest.models import CommentEvent, PushEvent

    from .models import Course, CourseCatalogue


@dc.dataclass(frozen=True, slots=True)
class DeliverableTarget:
    """A (course, deliverable) pair an event resolved to."""

    course_id: str
    deliv_id: str


class DeliverableResolver:
    """Apply the catalogue's routing and default-deliverable policy.

    Repositories are routed to the first course whose ``repo_pattern`` matches
    the repository name, falling back to the catalogue's default course.
    """

    def __init__(
        self,
        catalogue: CourseCatalogue,
        *,
        default_interval: dt.timedelta,
    ) -> None:
        """Bind the resolver to a catalogue and the instance default interval."""
        self._catalogue = catalogue
        self._default_interval = default_interval

    def course_for_repo(self, repo: str) -> Course | None:
        """Return the course that owns ``repo``, if any."""
        for course in self._catalogue.courses:
            if course.repo_pattern and fnmatch.fnmatchcase(repo, course.repo_pattern):
                return course
        if self._catalogue.default_course is None:
            return None
        return self._catalogue.course(self._catalogue.default_course)

    def push_targets(self, event: PushEvent) -> list[DeliverableTarget]:
        """Return the deliverables a push should be tested against."""
        course = self.course_for_repo(event.repo)
        if course is None:
            return []
        return [
            DeliverableTarget(course_id=course.id, deliv_id=deliverable.id)
            for deliverable in course.deliverables
            if deliverable.test_on_push
        ]

    def comment_target(self, event: CommentEvent) -> DeliverableTarget | None:
        """Return the deliverable a feedback request refers to.

        The event's own course and deliverable take precedence; missing
        values come from the repository's course and its default
        deliverable. ``None`` means the request cannot be resolved.
        """
        if event.course_id is not None:
            course = self._catalogue.course(event.course_id)
        else:
            course = self.course_for_repo(event.repo)
        if course is None:
            return None

        deliv_id = event.deliv_id or course.default_deliverable
        if deliv_id is None or course.deliverable(deliv_id) is None:
            return None
        return DeliverableTarget(course_id=course.id, deliv_id=deliv_id)

    def feedback_interval(self, course_id: str, deliv_id: str) -> dt.timedelta:
        """Return the minimum interval between feedback posts for a deliverable."""
        course = self._catalogue.course(course_id)
        if course is None:
            return self._default_interval
        deliverable = course.deliverable(deliv_id)
        if deliverable is not None:
            minutes = deliverable.feedback_interval_minutes
            if minutes is not None:
                return dt.timedelta(minutes=minutes)
        if course.feedback_interval_minutes is not None:
            return dt.timedelta(minutes=course.feedback_interval_minutes)
        return self._default_interval
