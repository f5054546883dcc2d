"""reviewtree — hierarchical grouping of pull requests by work item ancestry."""

__version__ = "0.1.0"
