"""
SightMate core: the interaction orchestrator and its loops.
"""
