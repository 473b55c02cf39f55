"""Status codes, phases, and kinds shared across subsystem boundaries."""

from enum import Enum


class Severity(str, Enum):
    """How a diagnostic affects compilation.

    Only ERROR blocks IR production. WARNING and INFO are carried on the
    IR for the manifest author.
    """

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DiagnosticKind(str, Enum):
    """Which compilation pass produced a diagnostic."""

    STRUCTURAL = "structural"
    CROSS_REFERENCE = "cross_reference"


class Operation(str, Enum):
    """Row-level operation an access policy can grant.

    Uses (str, Enum) because the value is rendered into policy SQL.
    """

    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class InvocationPhase(str, Enum):
    """Phase of a single agent/function invocation.

    Transitions:
        PENDING -> INPUT_VALIDATING -> INPUT_REJECTED
        PENDING -> INPUT_VALIDATING -> PROCESSING -> OUTPUT_VALIDATING -> OUTPUT_REJECTED
        PENDING -> INPUT_VALIDATING -> PROCESSING -> OUTPUT_VALIDATING -> COMMITTED
    """

    PENDING = "pending"
    INPUT_VALIDATING = "input_validating"
    INPUT_REJECTED = "input_rejected"
    PROCESSING = "processing"
    OUTPUT_VALIDATING = "output_validating"
    OUTPUT_REJECTED = "output_rejected"
    COMMITTED = "committed"


class MutationKind(str, Enum):
    """Kind of persist action."""

    UPDATE = "update"
    INSERT = "insert"
    LOG = "log"
    CUSTOM = "custom"


class MutationStatus(str, Enum):
    """Outcome of one attempted mutation.

    FAILED only appears on LOG records; any other failure aborts the
    action list and surfaces as PersistError.
    """

    APPLIED = "applied"
    FAILED = "failed"
