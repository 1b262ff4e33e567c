"""Application settings stored in the database (key → JSON value)."""

from datetime import datetime, timezone

from worksite.models import db


class AppSetting(db.Model):
    """Runtime-tunable setting, read through SettingsService."""

    __tablename__ = "app_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(120), nullable=False, unique=True)
    value = db.Column(db.JSON, nullable=True)
    category = db.Column(db.String(50), default="general")
    description = db.Column(db.Text, default="")
    is_editable = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "key": self.key,
            "value": self.value,
            "category": self.category,
            "description": self.description,
            "is_editable": self.is_editable,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<AppSetting {self.key}>"
