from enum import Enum, IntEnum, auto

from .serializable import Serializable


class ObjectKey(Serializable):
    """Identity of a namespaced Kubernetes object. Keys are used by the work
    queue and the state store, hence they are hashable.
    """

    namespace: str
    name: str

    def __hash__(self):
        return hash((self.namespace, self.name))

    def __str__(self):
        return f"{self.namespace}/{self.name}"


class ReasonCode(IntEnum):
    INTERNAL_ERROR = 1  # Default error
    INVARIANT_VIOLATION = 2  # Desired state binds a secret without request

    INVALID_ISSUER = 10  # Invalid value of the issuer annotation
    INVALID_DOMAIN = 11  # Invalid value of the domain annotation

    NO_DEFAULT_ISSUER = 20  # "auto" used but no default issuer configured
    ISSUER_NOT_FOUND = 21
    ISSUER_NOT_READY = 22

    DUPLICATE_HOST_AFTER_MERGE = 30

    RESOURCE_NOT_FOUND = 50
    KUBERNETES_ERROR = 60
    RESOURCE_CONFLICT = 61

    RECONCILED = 70


class ConditionStatus(Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Condition(Serializable):
    """Human and machine readable condition surfaced on a routing object.

    Attributes:
        kind (str): aspect of the object the condition is about, e.g. "Ready".
        status (ConditionStatus): whether the aspect holds.
        reason (ReasonCode): machine readable cause.
        message (str): human readable details.

    """

    kind: str
    status: ConditionStatus
    reason: ReasonCode
    message: str = ""


class WatchEventType(Enum):
    ADDED = auto()
    MODIFIED = auto()
    DELETED = auto()
