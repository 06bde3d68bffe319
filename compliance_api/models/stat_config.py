from datetime import date, datetime

from compliance_api.extensions import db


class StatConfig(db.Model):
    """
    Effective-dated statutory tables.
      PT:       value_json = {"slabs": [{"min": 0, "max": 7500, "amount": 0}, ...]}
      MIN_WAGE: value_json = {"amount": 12000, "role": "Helper"}   (role optional)
    """
    __tablename__ = "stat_configs"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum("PT", "MIN_WAGE", name="statconfig_type"), nullable=False)
    key = db.Column(db.String(80), nullable=False)
    # NULL = applies to every state
    scope_state = db.Column(db.String(10), nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=100)
    value_json = db.Column(db.JSON, nullable=False)
    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_to = db.Column(db.Date)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    closed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.Index(
            "ix_statcfg_resolve",
            "type",
            "scope_state",
            "effective_from",
            "effective_to",
            "priority",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "key": self.key,
            "scope_state": self.scope_state,
            "priority": self.priority,
            "value_json": self.value_json,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }
