"""Pure projections of decoded topic messages into quota, subscription,
license and project views."""

from topicquota.projection.projector import (
    latest,
    list_projects,
    project,
    project_license,
    project_quota,
    project_subscription,
    sort_messages,
)

__all__ = [
    "latest",
    "list_projects",
    "project",
    "project_license",
    "project_quota",
    "project_subscription",
    "sort_messages",
]
