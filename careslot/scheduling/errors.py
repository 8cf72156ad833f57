"""Expected scheduling failures, each carrying a stable client-facing code."""


class SchedulingError(Exception):
    code = 'scheduling_error'

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidWindow(SchedulingError, ValueError):
    code = 'invalid_window'


class SlotUnavailable(SchedulingError):
    code = 'slot_unavailable'


class SlotConflict(SchedulingError):
    code = 'slot_conflict'


class NotFound(SchedulingError):
    code = 'not_found'


class InvalidState(SchedulingError):
    code = 'invalid_state'


class PermissionDenied(SchedulingError):
    code = 'permission_denied'
