import enum


class ApplyStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    FAILED = "failed"
    SKIPPED = "skipped"
    DRY_RUN = "dry-run"


# Outcomes that count as "attempted" and are never retried automatically.
ATTEMPTED_STATUSES = frozenset({ApplyStatus.SUBMITTED, ApplyStatus.DRY_RUN})


class SubmitState(str, enum.Enum):
    READY = "ready-to-submit"
    INCOMPLETE = "incomplete"
    BLOCKED = "blocked"


class PolicyOutcome(str, enum.Enum):
    PASS = "pass"
    FAIL = "fail"


class RunState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class ClickPath(str, enum.Enum):
    NEW_TAB = "new-tab"
    SAME_PAGE_NAVIGATION = "same-page-navigation"
    SAME_PAGE_NO_NAV = "same-page-no-nav"
