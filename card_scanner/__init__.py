"""
Card scanner: recognizes Magic: The Gathering cards held up to a camera
and resolves them against the Scryfall catalog.
"""

__version__ = "1.0.0"
