"""Event ingestion resources for pushes and feedback requests."""
