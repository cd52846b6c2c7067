from tortoise import fields, models


class ClaimMessage(models.Model):
    id = fields.UUIDField(pk=True)

    claim = fields.ForeignKeyField(
        "models.Claim",
        related_name="messages",
        on_delete=fields.CASCADE
    )
    sender = fields.ForeignKeyField(
        "models.Profile",
        related_name="sent_messages",
        on_delete=fields.CASCADE
    )

    # may be empty when the message only carries attachments
    message = fields.TextField(default="")

    created_at = fields.DatetimeField(auto_now_add=True)

    attachments: fields.ReverseRelation["MessageAttachment"]

    class Meta:
        table = "claim_messages"


class MessageAttachment(models.Model):
    id = fields.UUIDField(pk=True)

    message = fields.ForeignKeyField(
        "models.ClaimMessage",
        related_name="attachments",
        on_delete=fields.CASCADE
    )

    # <claim_id>/<message_id>/<file_name> inside the attachment store
    file_path = fields.CharField(max_length=500)
    file_name = fields.CharField(max_length=255)
    file_type = fields.CharField(max_length=150)
    file_size = fields.IntField()

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "message_attachments"
