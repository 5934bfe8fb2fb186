"""SemanticMediator - semantic conflict resolution with a learning transformation cache."""

__version__ = "0.1.0"
