"""External platform tags."""

from enum import Enum


class Platform(str, Enum):
    """Platform tag stored on Thread.external_origin, Message.origin and Integration.type."""

    SLACK = "slack"
    GITHUB = "github"
    DISCORD = "discord"
