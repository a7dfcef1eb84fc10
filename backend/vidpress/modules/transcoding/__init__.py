"""Adaptive transcoding pipeline.

Validates, probes and encodes uploaded videos into a single compressed
delivery variant, tracking each job's lifecycle.
"""
