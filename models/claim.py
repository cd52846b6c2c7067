from enum import Enum

from tortoise import fields, models


class ClaimStatus(str, Enum):
    NEU = "neu"
    IN_BEARBEITUNG = "in_bearbeitung"
    ABGESCHLOSSEN = "abgeschlossen"
    STORNIERT = "storniert"


class Claim(models.Model):
    """Glass-damage case. Only the fields the chat reads are mapped here."""

    id = fields.UUIDField(pk=True)
    status = fields.CharEnumField(ClaimStatus, max_length=20, default=ClaimStatus.NEU)
    is_archived = fields.BooleanField(default=False)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)
    completed_at = fields.DatetimeField(null=True)

    messages: fields.ReverseRelation["ClaimMessage"]

    class Meta:
        table = "claims"

    def __str__(self):
        return f"Claim #{self.id} ({self.status.value})"

    @property
    def is_chat_read_only(self) -> bool:
        return self.status == ClaimStatus.ABGESCHLOSSEN
