"""
Central constants and enumerations.
"""
from __future__ import annotations

from enum import Enum


class PrivilegeKey(str, Enum):
    ADD_ROLE = "ADD_ROLE"
    VIEW_ROLE = "VIEW_ROLE"
    EDIT_ROLE = "EDIT_ROLE"
    DELETE_ROLE = "DELETE_ROLE"
    ADD_USER = "ADD_USER"
    EDIT_USER = "EDIT_USER"
    VIEW_USER = "VIEW_USER"
    EXPORT_USER = "EXPORT_USER"
    ACTIVATE_USER = "ACTIVATE_USER"
    DEACTIVATE_USER = "DEACTIVATE_USER"
    ARCHIVE_USER = "ARCHIVE_USER"
    EDIT_USER_WORKTIME = "EDIT_USER_WORKTIME"
    EDIT_USER_VACATION = "EDIT_USER_VACATION"
    ADD_DEPARTMENT = "ADD_DEPARTMENT"
    EDIT_DEPARTMENT = "EDIT_DEPARTMENT"
    DELETE_DEPARTMENT = "DELETE_DEPARTMENT"
    EDIT_INSTITUTION_WORKTIME = "EDIT_INSTITUTION_WORKTIME"
    VIEW_VENDOR_DB = "VIEW_VENDOR_DB"
    EDIT_VENDOR_DB = "EDIT_VENDOR_DB"
    VIEW_INSTITUTION_PRICE_RATE = "VIEW_INSTITUTION_PRICE_RATE"
    EDIT_INSTITUTION_PRICE_RATE = "EDIT_INSTITUTION_PRICE_RATE"
    VIEW_GENERAL_PRICELIST = "VIEW_GENERAL_PRICELIST"
    VIEW_VENDOR_TASK = "VIEW_VENDOR_TASK"


class InstitutionUserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"
    ARCHIVED = "ARCHIVED"


class AuditEventType(str, Enum):
    CREATE_OBJECT = "CREATE_OBJECT"
    MODIFY_OBJECT = "MODIFY_OBJECT"
    REMOVE_OBJECT = "REMOVE_OBJECT"
    EXPORT_INSTITUTION_USERS = "EXPORT_INSTITUTION_USERS"


class AuditFailureType(str, Enum):
    UNPROCESSABLE_ENTITY = "UNPROCESSABLE_ENTITY"
    FORBIDDEN = "FORBIDDEN"


class AuditObjectType(str, Enum):
    INSTITUTION = "INSTITUTION"
    INSTITUTION_USER = "INSTITUTION_USER"
    ROLE = "ROLE"
    DEPARTMENT = "DEPARTMENT"
    INSTITUTION_VACATION = "INSTITUTION_VACATION"
    INSTITUTION_USER_VACATION = "INSTITUTION_USER_VACATION"


# Outbox event names consumed by downstream services
EVENT_INSTITUTION_USER_SAVED = "institution-user.saved"
EVENT_INSTITUTION_USER_ACTIVATED = "institution-user.activated"

ROOT_ROLE_NAME = "Asutuse peakasutaja"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
WORKTIME_FIELDS = ("worktime_timezone",) + tuple(
    f"{day}_worktime_{edge}" for day in WEEKDAYS for edge in ("start", "end")
)

ALLOWED_PER_PAGE = (10, 50, 100)
MAX_NAME_LENGTH = 255
MAX_INSTITUTION_VACATIONS = 100
MAX_INSTITUTION_USER_VACATIONS = 10000
