"""Schedule GitHub repository creation for a future moment."""

__version__ = "0.1.0"
