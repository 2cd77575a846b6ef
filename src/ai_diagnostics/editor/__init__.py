"""Editor package containing document models and the host workspace."""

from . import diagnostics, document_model, workspace

__all__ = ["diagnostics", "document_model", "workspace"]
