"""
StoryReader - illustrated read-along player

Plays a paginated article page by page and highlights each narrated word
as it is spoken.
"""

__version__ = "1.0.0"
