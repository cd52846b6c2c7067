class ChatError(Exception):
    """Base class for every error raised by the claim chat."""


class HistoryLoadFailure(ChatError):
    pass


class SendFailure(ChatError):
    """The message body could not be persisted; nothing was stored."""


class AttachmentUploadFailure(ChatError):
    def __init__(self, file_path: str, reason: str = ""):
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"Upload failed for {file_path}: {reason}")


class ValidationRejection(ChatError):
    """Nothing left to send once invalid attachments were filtered out."""

    def __init__(self, message: str, rejections=()):
        self.rejections = list(rejections)
        super().__init__(message)


class ReadOnlyViolation(ChatError):
    """Sending on a chat whose claim is completed."""

    def __init__(self, claim_id):
        self.claim_id = claim_id
        super().__init__(f"Chat for claim {claim_id} is closed")
