"""
Auth Models — users and the fixed role catalogue.

Roles drive two independent decisions:
    - which template fields / sections a user may edit (field_permissions)
    - which workflow status transitions a user may perform (workflow_engine)
"""

from datetime import datetime, timezone

from formcapture.models import db


# ═══════════════════════════════════════════════════════════════
# ROLES
# ═══════════════════════════════════════════════════════════════
ROLE_SUPERADMIN = "superadmin"
ROLE_ADMIN = "admin"
ROLE_PRODUCTION = "production"
ROLE_PRODUCTION_MANAGER = "production_manager"
ROLE_QUALITY = "quality"
ROLE_QUALITY_MANAGER = "quality_manager"
ROLE_VIEWER = "viewer"

VALID_ROLES = frozenset({
    ROLE_SUPERADMIN,
    ROLE_ADMIN,
    ROLE_PRODUCTION,
    ROLE_PRODUCTION_MANAGER,
    ROLE_QUALITY,
    ROLE_QUALITY_MANAGER,
    ROLE_VIEWER,
})

# Roles with administrative reach over every entry and template
ADMIN_ROLES = frozenset({ROLE_SUPERADMIN, ROLE_ADMIN})

# Roles allowed to capture new form entries
ENTRY_CREATOR_ROLES = frozenset({
    ROLE_SUPERADMIN,
    ROLE_ADMIN,
    ROLE_PRODUCTION,
    ROLE_PRODUCTION_MANAGER,
    ROLE_QUALITY,
    ROLE_QUALITY_MANAGER,
})

ROLE_LABELS = {
    ROLE_SUPERADMIN: "Super Administrador",
    ROLE_ADMIN: "Administrador",
    ROLE_PRODUCTION: "Producción",
    ROLE_PRODUCTION_MANAGER: "Gerente de Producción",
    ROLE_QUALITY: "Calidad",
    ROLE_QUALITY_MANAGER: "Gerente de Calidad",
    ROLE_VIEWER: "Visualizador",
}


# ═══════════════════════════════════════════════════════════════
# USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    role = db.Column(db.String(30), nullable=False, default=ROLE_VIEWER)
    department = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "role_label": ROLE_LABELS.get(self.role, self.role),
            "department": self.department,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"
