from enum import StrEnum


class StringEnum(StrEnum):
    """
    A StrEnum subclass that behaves like a plain string in all representations.

    StrEnum.__repr__ returns the member representation
    (e.g., '<DeliveryChannel.EMAIL: 'email'>'); log lines, Mongo documents
    and JSON payloads want just the value.

    Usage:
        class DeliveryChannel(StringEnum):
            EMAIL = "email"

        repr(DeliveryChannel.EMAIL)  # "email"
    """

    def __repr__(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value

    def __format__(self, format_spec: str) -> str:
        return self.value.__format__(format_spec)
