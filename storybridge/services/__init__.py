"""
External services: story generation and narration audio.
"""
