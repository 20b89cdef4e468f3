"""Model documents and the autosave snapshot."""

from compartsim.persistence.document import (
    AutosaveManager,
    load_model,
    model_from_document,
    model_to_document,
    save_model,
)

__all__ = [
    "AutosaveManager",
    "load_model",
    "model_from_document",
    "model_to_document",
    "save_model",
]
