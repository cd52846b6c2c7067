from core.config import settings
from core.logger import chat_logger
from schemas.chat import AttachmentRejection, OutgoingFile

SUBMIT = "submit"
NEWLINE = "newline"


def validate_file(file: OutgoingFile) -> AttachmentRejection | None:
    if file.file_type not in settings.CHAT_ALLOWED_TYPES:
        return AttachmentRejection(
            file_name=file.file_name,
            reason="type",
            message=f"Dateityp nicht erlaubt: {file.file_name}",
        )
    if file.file_size > settings.CHAT_MAX_FILE_SIZE:
        return AttachmentRejection(
            file_name=file.file_name,
            reason="size",
            message=f"Datei zu groß (max 5MB): {file.file_name}",
        )
    return None


def filter_files(files, already_pending=()):
    """Valid files appended to the pending ones and capped (first come wins), plus the rejections."""
    accepted, rejections = [], []
    for file in files:
        rejection = validate_file(file)
        if rejection:
            rejections.append(rejection)
        else:
            accepted.append(file)

    pending = (list(already_pending) + accepted)[:settings.CHAT_MAX_ATTACHMENTS]
    return pending, rejections


def key_action(key: str, shift: bool = False) -> str | None:
    if key == "Enter":
        return NEWLINE if shift else SUBMIT
    return None


class MessageComposer:
    """Text and pending attachments collected before they go to a ChatSession."""

    def __init__(self):
        self.text = ""
        self.attachments: list[OutgoingFile] = []

    def add_files(self, files) -> list[AttachmentRejection]:
        self.attachments, rejections = filter_files(files, self.attachments)
        for rejection in rejections:
            chat_logger.logger.info(f"🚫 {rejection.message}")
        return rejections

    def remove_attachment(self, index: int):
        if 0 <= index < len(self.attachments):
            del self.attachments[index]

    @property
    def can_attach(self) -> bool:
        return len(self.attachments) < settings.CHAT_MAX_ATTACHMENTS

    def can_send(self, is_sending: bool) -> bool:
        return bool(self.text.strip() or self.attachments) and not is_sending

    async def submit(self, session):
        """Hand the composed message to the session; cleared only once it was sent."""
        if not self.can_send(session.is_sending):
            return None

        result = await session.send_message(self.text.strip(), self.attachments or None)
        self.text = ""
        self.attachments = []
        return result
