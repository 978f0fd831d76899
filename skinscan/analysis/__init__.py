"""Landmark ROI resolution and heuristic skin metrics."""
