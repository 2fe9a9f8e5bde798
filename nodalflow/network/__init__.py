"""Network model for nodalflow.

Provides bus, branch and generator registries, the PowerSystem mutation
API, and AC/DC nodal matrix construction with incremental updates.
"""
