from __future__ import annotations

from ..extensions import db
from vetcaja.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    One row per refused or noteworthy access: failed login, missing
    permission, a drawer id probed from another clinic.

    Rows are only ever inserted. tenant_id and user_id stay empty when the
    caller could not be identified.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_tenant_occurred", "tenant_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    # request path, and either the HTTP verb or the permission code checked
    resource = db.Column(db.String(128), nullable=True)
    action = db.Column(db.String(64), nullable=True)
    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    tenant = db.relationship("Tenant", backref=db.backref("security_events", lazy=True))
    user = db.relationship("User", backref=db.backref("security_events", lazy=True))

    def __repr__(self) -> str:
        return f"<SecurityEvent {self.event_type} user={self.user_id} ok={self.success}>"

    def to_dict(self) -> dict:
        fields = ("id", "tenant_id", "user_id", "event_type", "resource", "action", "success", "reason", "ip_address")
        data = {name: getattr(self, name) for name in fields}
        data["occurred_at"] = to_utc_z(self.occurred_at)
        return data
