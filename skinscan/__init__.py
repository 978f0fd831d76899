"""SkinScan: photo quality gating, heuristic skin metrics and the analysis workflow."""

__all__ = [
    "analysis",
    "clients",
    "config",
    "detectors",
    "errors",
    "imaging",
    "io_utils",
    "pipeline",
    "types",
]
