from .routes import core_bp

__all__ = ['core_bp']
