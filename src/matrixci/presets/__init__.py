from .rust import rust_workflow

__all__ = ["rust_workflow"]
