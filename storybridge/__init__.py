"""
StoryBridge

Personalized children's stories with narrated read-along highlighting.
"""

__version__ = "1.0.0"
