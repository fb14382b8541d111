"""OpsGuide: operational request classification, remediation planning and step execution."""

__version__ = "1.0.0"
