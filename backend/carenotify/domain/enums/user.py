from carenotify.core.utils import StringEnum


class UserRole(StringEnum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    PHARMACY = "pharmacy"
    ADMIN = "admin"
