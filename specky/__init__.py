"""Specky - spec-driven implementation pipeline core package."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__version__ = "0.3.0"

__all__ = [
    "ChangeApplicator",
    "ImplementationPipeline",
    "QualityGate",
    "SmartContextBuilder",
    "SpeckySettings",
    "WorkflowManager",
    "Workspace",
]
