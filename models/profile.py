from enum import Enum

from tortoise import fields, models


class UserRole(str, Enum):
    ADMIN = "admin"
    VERSICHERUNG = "versicherung"
    WERKSTATT = "werkstatt"


ROLE_LABELS = {
    UserRole.WERKSTATT: "Werkstatt",
    UserRole.VERSICHERUNG: "Versicherung",
    UserRole.ADMIN: "Administrator",
}


class Profile(models.Model):
    id = fields.UUIDField(pk=True)
    role = fields.CharEnumField(UserRole, max_length=20, default=UserRole.VERSICHERUNG)
    email = fields.CharField(max_length=255, null=True)

    # insurer name or workshop location, resolved for chat labels
    display_name = fields.CharField(max_length=255, null=True)
    company_name = fields.CharField(max_length=255, null=True)
    address = fields.CharField(max_length=500, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "profiles"

    def __str__(self):
        return f"{self.display_name or self.email or self.id} ({self.role.value})"

    @property
    def sender_name(self) -> str:
        return self.display_name or self.company_name or ROLE_LABELS[self.role]

    def to_dict(self):
        return {
            "id": str(self.id),
            "role": self.role.value,
            "email": self.email,
            "display_name": self.display_name,
            "company_name": self.company_name,
            "address": self.address,
        }
