"""
SightMate - Device and model adapters used by the orchestrator.
"""
