"""Structural checks for course catalogues."""

from __future__ import annotations

import typing as typ

from autotest.errors import ConfigurationError

if typ.TYPE_CHECKING:
    from .models import Course, CourseCatalogue


class CatalogueValidationError(ConfigurationError):
    """Raised when a catalogue fails validation."""

    def __init__(self, issues: list[str]) -> None:
        """Keep every issue while presenting them as one message."""
        super().__init__("\n".join(issues))
        self.issues = issues


def _check_course(course: Course, issues: list[str]) -> None:
    seen: set[str] = set()
    for deliverable in course.deliverables:
        if deliverable.id in seen:
            issues.append(f"course {course.id}: duplicate deliverable {deliverable.id}")
        seen.add(deliverable.id)
        interval = deliverable.feedback_interval_minutes
        if interval is not None and interval < 0:
            issues.append(
                f"course {course.id}: deliverable {deliverable.id} has a negative "
                "feedback interval"
            )

    if course.default_deliverable and course.default_deliverable not in seen:
        issues.append(
            f"course {course.id}: default deliverable "
            f"{course.default_deliverable} is not defined"
        )
    interval = course.feedback_interval_minutes
    if interval is not None and interval < 0:
        issues.append(f"course {course.id}: negative feedback interval")


def validate_catalogue(catalogue: CourseCatalogue) -> CourseCatalogue:
    """Return ``catalogue`` when it is internally consistent.

    Raises
    ------
    CatalogueValidationError
        Listing every problem found.

    """
    issues: list[str] = []
    ids: set[str] = set()
    for course in catalogue.courses:
        if course.id in ids:
            issues.append(f"duplicate course {course.id}")
        ids.add(course.id)
        _check_course(course, issues)

    if catalogue.default_course and catalogue.default_course not in ids:
        issues.append(f"default course {catalogue.default_course} is not defined")

    if issues:
        raise CatalogueValidationError(issues)
    return catalogue
