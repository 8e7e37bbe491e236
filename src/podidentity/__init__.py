"""EKS addon pod identity association reconciler."""

__version__ = "0.1.0"
