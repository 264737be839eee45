"""
Document Flow
Organisation domain model.

Models:
    - Department: top-level organisational unit; release target.
    - Division: sub-unit of a department; release target.
    - User: employee, admin, head, recorder or releaser acting on documents.
"""

from datetime import datetime, timezone

from docflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = (
    "SuperAdmin",
    "Admin",
    "Employee",
    "DepartmentHead",
    "DivisionHead",
    "OfficerInCharge",
    "Recorder",
    "Releaser",
)

# Roles allowed to impersonate or reassign other users
ADMIN_ROLES = frozenset({"SuperAdmin", "Admin"})

USER_STATUSES = ("active", "inactive")


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)

    divisions = db.relationship(
        "Division", back_populates="department", cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    def __repr__(self) -> str:
        return f"<Department {self.id}: {self.name}>"


class Division(db.Model):
    __tablename__ = "divisions"
    __table_args__ = (
        db.UniqueConstraint("department_id", "name", name="uq_divisions_department_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(120), nullable=False)

    department = db.relationship("Department", back_populates="divisions")

    def to_dict(self) -> dict:
        return {"id": self.id, "department_id": self.department_id, "name": self.name}


class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint(
            "role IN ('SuperAdmin', 'Admin', 'Employee', 'DepartmentHead', "
            "'DivisionHead', 'OfficerInCharge', 'Recorder', 'Releaser')",
            name="ck_users_role",
        ),
        db.CheckConstraint("status IN ('active', 'inactive')", name="ck_users_status"),
        db.Index("ix_users_full_name", "full_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    id_number = db.Column(db.String(50))
    full_name = db.Column(db.String(200), nullable=False)
    gender = db.Column(db.String(20))
    email = db.Column(db.String(200))
    username = db.Column(db.String(100), nullable=False, unique=True)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(30), nullable=False, default="Employee")
    status = db.Column(db.String(20), nullable=False, default="active")
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    division_id = db.Column(
        db.Integer, db.ForeignKey("divisions.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    department = db.relationship("Department")
    division = db.relationship("Division")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "id_number": self.id_number,
            "full_name": self.full_name,
            "gender": self.gender,
            "email": self.email,
            "username": self.username,
            "role": self.role,
            "status": self.status,
            "active": self.is_active,
            "department": self.department.name if self.department else None,
            "division": self.division.name if self.division else None,
        }

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.username} ({self.role})>"
