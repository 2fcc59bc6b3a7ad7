"""StudyWatch — segment-based study time tracker."""

__version__ = "1.0.0"
