"""
User profile snapshot as returned by the portal backend.

The backend owns this record; the client caches it and re-serialises it
without losing keys it does not model.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class UserRole(Enum):
    ADMIN = "admin"
    FACULTY = "faculty"
    STUDENT = "student"


def _as_list(value: Any) -> List[Any]:
    # server-owned fields; anything but a list reads as empty
    return list(value) if isinstance(value, list) else []


@dataclass
class Associations:
    courses: List[str] = field(default_factory=list)
    sessions: List[str] = field(default_factory=list)
    semesters: List[str] = field(default_factory=list)
    subjects: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Associations":
        data = data if isinstance(data, dict) else {}
        return cls(
            courses=_as_list(data.get("courses")),
            sessions=_as_list(data.get("sessions")),
            semesters=_as_list(data.get("semesters")),
            subjects=_as_list(data.get("subjects")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "courses": list(self.courses),
            "sessions": list(self.sessions),
            "semesters": list(self.semesters),
            "subjects": list(self.subjects),
        }


@dataclass
class LoginAttempts:
    count: int = 0
    last_attempt: Optional[str] = None
    lock_until: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LoginAttempts":
        data = data if isinstance(data, dict) else {}
        count = data.get("count")
        return cls(
            count=count if isinstance(count, int) else 0,
            last_attempt=data.get("lastAttempt"),
            lock_until=data.get("lockUntil"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"count": self.count}
        if self.last_attempt is not None:
            result["lastAttempt"] = self.last_attempt
        if self.lock_until is not None:
            result["lockUntil"] = self.lock_until
        return result


# attribute name -> backend key, for scalar fields
_SCALAR_FIELDS = {
    "id": "_id",
    "full_name": "fullName",
    "email": "email",
    "phone_number": "phoneNumber",
    "department": "department",
    "profile_pic": "profilePic",
    "faculty_id": "facultyId",
    "designation": "designation",
    "roll_number": "rollNumber",
    "is_verified": "isVerified",
    "is_blocked": "isBlocked",
    "token_version": "tokenVersion",
    "last_login": "lastLogin",
    "device_token": "deviceToken",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

_NESTED_FIELDS = {
    "role": "role",
    "associations": "associations",
    "teaching_assignments": "teachingAssignments",
    "login_attempts": "loginAttempts",
}


def to_backend_key(name: str) -> str:
    """Map a snake_case attribute name to the backend's key, if known."""
    return _SCALAR_FIELDS.get(name) or _NESTED_FIELDS.get(name) or name


@dataclass
class UserProfile:
    """Cached identity, role and security metadata of the signed-in user."""

    id: str
    email: str = ""
    full_name: str = ""
    role: UserRole = UserRole.STUDENT
    phone_number: Optional[str] = None
    department: Optional[str] = None
    profile_pic: Optional[str] = None

    # Faculty-specific
    faculty_id: Optional[str] = None
    designation: Optional[str] = None
    teaching_assignments: List[Dict[str, Any]] = field(default_factory=list)

    # Student-specific
    roll_number: Optional[str] = None

    associations: Associations = field(default_factory=Associations)

    # Status and security
    is_verified: bool = False
    is_blocked: bool = False
    token_version: int = 0
    last_login: Optional[str] = None
    login_attempts: LoginAttempts = field(default_factory=LoginAttempts)
    device_token: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # Keys the client does not model, kept for round-tripping
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_faculty(self) -> bool:
        return self.role is UserRole.FACULTY

    @property
    def is_student(self) -> bool:
        return self.role is UserRole.STUDENT

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        """Build a profile from a backend user document."""
        if not isinstance(data, dict):
            raise ValueError("User data must be a JSON object")

        user_id = data.get("_id") or data.get("id")
        if not user_id:
            raise ValueError("User data is missing an id")

        kwargs: Dict[str, Any] = {}
        for attr, key in _SCALAR_FIELDS.items():
            if key in data:
                kwargs[attr] = data[key]
        kwargs["id"] = str(user_id)

        try:
            kwargs["role"] = UserRole(data.get("role", UserRole.STUDENT.value))
        except ValueError:
            raise ValueError(f"Unknown user role: {data.get('role')!r}")

        kwargs["associations"] = Associations.from_dict(data.get("associations"))
        kwargs["teaching_assignments"] = _as_list(data.get("teachingAssignments"))
        kwargs["login_attempts"] = LoginAttempts.from_dict(data.get("loginAttempts"))

        known = set(_SCALAR_FIELDS.values()) | set(_NESTED_FIELDS.values()) | {"id"}
        kwargs["extra"] = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise back into the backend's document shape."""
        result: Dict[str, Any] = dict(self.extra)
        for attr, key in _SCALAR_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                result[key] = value
        result["role"] = self.role.value
        result["associations"] = self.associations.to_dict()
        if self.teaching_assignments:
            result["teachingAssignments"] = list(self.teaching_assignments)
        result["loginAttempts"] = self.login_attempts.to_dict()
        return result

    def merged(self, changes: Dict[str, Any]) -> "UserProfile":
        """
        Return a copy with ``changes`` applied.

        Keys may be backend keys (``fullName``) or attribute names
        (``full_name``).
        """
        data = self.to_dict()
        for name, value in changes.items():
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (Associations, LoginAttempts)):
                value = value.to_dict()
            data[to_backend_key(name)] = value
        return UserProfile.from_dict(data)
