# skybox_app/models/__init__.py
# -*- coding: utf-8 -*-
from .profile import Profile
from .ledger import CreditLedger
from .file import FileRecord, AuditLog
from .payment import PaymentTransaction


__all__ = [
    "Profile",
    "CreditLedger",
    "FileRecord",
    "AuditLog",
    "PaymentTransaction",
]
