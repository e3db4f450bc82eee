"""HTTP surface for StoryMaker."""

from storymaker.api.routes import router

__all__ = ["router"]
