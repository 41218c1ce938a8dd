"""Site role-coverage and starter-pack reconciliation engine."""

__version__ = "0.4.0"
