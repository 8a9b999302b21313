import enum


class Visibility(str, enum.Enum):
    """Disclosure level shared by events and series."""

    PUBLIC = "public"
    AUTH_REQUIRED = "auth_required"
    UNLISTED = "unlisted"
