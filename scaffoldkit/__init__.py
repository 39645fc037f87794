"""scaffoldkit -- plugin-driven project scaffolding with transactional rollback."""

__version__ = "1.0.0"
