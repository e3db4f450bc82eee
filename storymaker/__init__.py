"""StoryMaker: frame-accurate vertical videos from HTML story templates."""

__version__ = "0.1.0"
