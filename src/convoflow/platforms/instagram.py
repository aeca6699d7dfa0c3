"""Instagram Messaging webhook processor."""

from convoflow.domain.models import CHANNEL_INSTAGRAM, MessageKind

from .messenger import MessengerProcessor


class InstagramProcessor(MessengerProcessor):
    platform = "instagram"
    channel_id = CHANNEL_INSTAGRAM
    attachment_kinds = {
        "image": MessageKind.IMAGE,
        "video": MessageKind.VIDEO,
        "audio": MessageKind.AUDIO,
    }
