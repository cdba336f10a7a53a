from __future__ import annotations

from ..extensions import db
from vetcaja.time_utils import to_utc_z


class Tenant(db.Model):
    """
    A veterinary clinic account.

    Everything cash related (locations, staff, drawers, ledger rows) hangs
    off exactly one tenant and is never visible to another. `plan` is the
    subscription key the capability lookup reads: BASICO, PROFESIONAL,
    CLINICA or EMPRESA.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    plan = db.Column(db.String(32), nullable=False, default="BASICO")
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now()
    )

    def __repr__(self) -> str:
        return f"<Tenant {self.id} {self.name!r} plan={self.plan}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "plan": self.plan,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """A branch of the clinic. Names repeat freely across tenants."""
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_locations_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location {self.id} tenant={self.tenant_id} {self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
