"""
SightMate - voice-driven walking companion for blind and visually impaired users.
"""

__version__ = "0.4.0"
