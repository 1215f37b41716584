"""Content-moderation gateway: text, image and video screening in front of a posting API."""

__version__ = "0.1.0"
