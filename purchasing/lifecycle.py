from purchasing.models import LifecycleStatus

# Shared by purchase orders and line items; position is the only ordering.
STATUS_PROGRESSION = (
    LifecycleStatus.CREATED,
    LifecycleStatus.ACCEPTED,
    LifecycleStatus.PLANNED,
    LifecycleStatus.DELIVERED,
)


def status_index(status):
    return STATUS_PROGRESSION.index(status)


def is_valid_status(status):
    return status in STATUS_PROGRESSION


def is_regression(current, target):
    return status_index(target) < status_index(current)


def is_terminal(status):
    return status == LifecycleStatus.DELIVERED


def all_delivered(statuses):
    statuses = list(statuses)
    return bool(statuses) and all(is_terminal(status) for status in statuses)
