"""
Form Capture Platform
Activity domain model.

Models:
    - ActivityLog: append-only trail of user actions on templates and entries.
"""

import json
from datetime import datetime, timezone

from formcapture.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_RESOURCE_TYPES = {
    "form_template", "form_entry", "form_entries", "user",
}

ACTIVITY_ACTIONS = {
    "created",
    "updated",
    "deleted",
    "cloned",
    "data_saved",
    "submitted",
    "transitioned",
    "stage_advanced",
    "folio_updated",
    "folio_deleted",
    "exported",
    "exported_consolidated",
    "login",
}


class ActivityLog(db.Model):
    """
    Immutable activity row.  ``details_json`` carries the action context
    (status change, exported format, cloned-from id, …).
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_resource", "resource_type", "resource_id"),
        db.Index("idx_activity_user", "user_id"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    action = db.Column(db.String(40), nullable=False)
    resource_type = db.Column(db.String(30), nullable=False)
    resource_id = db.Column(db.Integer, nullable=False)
    details_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.resource_type}/{self.resource_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────


def write_activity(
    *,
    user_id: int | None,
    action: str,
    resource_type: str,
    resource_id: int,
    details: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.
    """
    log = ActivityLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details_json=json.dumps(details or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
