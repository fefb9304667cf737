"""Per-row save state, owned by one session."""

from typing import Optional

from ledgersync.models.results import RowState, RowStatus
from ledgersync.models.transaction import is_temporary_id


class RowStateTable:
    """
    Row id -> ``RowState``.

    Rows without an entry are idle: local drafts when their id is temporary,
    persisted otherwise.
    """

    def __init__(self):
        self._states: dict[str, RowState] = {}

    def get(self, row_id: str) -> RowState:
        state = self._states.get(row_id)
        if state is not None:
            return state
        status = RowStatus.LOCAL_DRAFT if is_temporary_id(row_id) else RowStatus.PERSISTED
        return RowState(status=status)

    def begin_save(self, row_id: str) -> None:
        self._states[row_id] = RowState(status=RowStatus.SAVING)

    def succeed(self, row_id: str, new_id: Optional[str] = None) -> None:
        """Settle a save; a create moves the state to the persisted id."""
        self._states.pop(row_id, None)
        if new_id and new_id != row_id:
            self._states.pop(new_id, None)

    def fail(self, row_id: str, error: str) -> None:
        status = RowStatus.LOCAL_DRAFT if is_temporary_id(row_id) else RowStatus.PERSISTED
        self._states[row_id] = RowState(status=status, error=error or "Save failed")

    def clear(self, row_id: Optional[str] = None) -> None:
        if row_id is None:
            self._states.clear()
        else:
            self._states.pop(row_id, None)

    def is_saving(self, row_id: str) -> bool:
        return self.get(row_id).is_saving

    def error_for(self, row_id: str) -> Optional[str]:
        return self.get(row_id).error

    @property
    def saving_ids(self) -> set[str]:
        return {rid for rid, state in self._states.items() if state.is_saving}

    @property
    def errors(self) -> dict[str, str]:
        return {rid: state.error for rid, state in self._states.items() if state.error}
