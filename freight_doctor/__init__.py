"""Column-shift repair and header unification for customs broker exports."""

__version__ = "0.1.0"
