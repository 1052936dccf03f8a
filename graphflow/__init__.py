"""graphflow: a workflow execution engine for DAGs of typed nodes."""

__version__ = "1.0.0"
