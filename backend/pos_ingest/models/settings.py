from __future__ import annotations

from ..extensions import db
from pos_ingest.time_utils import to_utc_z


class SystemConfig(db.Model):
    """
    Key-value business configuration.

    Values are stored as text and parsed by settings_service; a missing key
    means "use the built-in default".
    """
    __tablename__ = "system_config"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_system_config_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)
    description = db.Column(db.String(255), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "updated_at": to_utc_z(self.updated_at),
        }
