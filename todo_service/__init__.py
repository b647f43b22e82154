"""Todo CRUD service instrumented with Prometheus metrics."""

__version__ = "1.0.0"
