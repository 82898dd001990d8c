"""Services — BuilderApi (REST client) and Notifier."""

from compliance_draft.services.builder_api import BuilderApi, BuilderApiError, HttpBuilderApi
from compliance_draft.services.notifier import Notification, Notifier

__all__ = ["BuilderApi", "BuilderApiError", "HttpBuilderApi", "Notification", "Notifier"]
