"""Facebook Messenger webhook processor."""

from convoflow.domain.models import CHANNEL_FACEBOOK, MessageKind

from .messenger import MessengerProcessor


class FacebookProcessor(MessengerProcessor):
    platform = "facebook"
    channel_id = CHANNEL_FACEBOOK
    attachment_kinds = {
        "image": MessageKind.IMAGE,
        "video": MessageKind.VIDEO,
        "audio": MessageKind.AUDIO,
        "file": MessageKind.DOCUMENT,
    }
