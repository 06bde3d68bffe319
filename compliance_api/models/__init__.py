# compliance_api/models/__init__.py
import importlib

MODEL_MODULES = (
    "compliance_api.models.stat_config",
    "compliance_api.models.compliance",
)


def load_all():
    """Import the model modules so their tables land on db.metadata (create_all, autogenerate)."""
    return [importlib.import_module(name) for name in MODEL_MODULES]
