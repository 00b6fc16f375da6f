"""Course catalogue: deliverables, defaults and feedback intervals."""

from __future__ import annotations

from .loader import load_catalogue
from .models import Course, CourseCatalogue, Deliverable
from .resolver import DeliverableResolver, DeliverableTarget
from .validation import CatalogueValidationError, validate_catalogue

__all__ = [
    "CatalogueValidationError",
    "Course",
    "CourseCatalogue",
    "Deliverable",
    "DeliverableResolver",
    "DeliverableTarget",
    "load_catalogue",
    "validate_catalogue",
]
