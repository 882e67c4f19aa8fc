import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from flask import current_app

from fitout_app.client_project import (
    CaseSchemaError,
    ClientProject,
    RawCase,
    raw_case_to_client_project,
)
from fitout_app.documents import (
    CASES_COLLECTION,
    DocumentSnapshot,
    DocumentStoreDisabledError,
)
from fitout_app.timestamps import utcnow


NOT_FOUND_MESSAGE = "Project not found"


@dataclass(frozen=True)
class ClientCaseState:
    project: Optional[ClientProject] = None
    loading: bool = True
    error: Optional[str] = None


StateListener = Callable[[ClientCaseState], None]


class ClientCaseWatcher:
    """Keeps a ``ClientProject`` in step with one case document.

    Each snapshot from the store is mapped in full and published to the
    registered listeners. At most one subscription is open at a time.
    """

    def __init__(self, store, *, clock: Optional[Callable] = None):
        self._store = store
        self._clock = clock or utcnow
        self._lock = threading.RLock()
        self._listeners: List[StateListener] = []
        self._unsubscribe = None
        self._case_id = None
        self._generation = 0
        self._state = ClientCaseState()

    @property
    def state(self) -> ClientCaseState:
        with self._lock:
            return self._state

    @property
    def case_id(self):
        return self._case_id

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    def add_listener(self, listener: StateListener):
        with self._lock:
            self._listeners.append(listener)

    def watch(self, case_id: Optional[str]):
        self._stop()
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._case_id = case_id or None
        if not case_id:
            self._publish(ClientCaseState(project=None, loading=True, error=None))
            return

        self._publish(ClientCaseState(project=None, loading=True, error=None))
        try:
            unsubscribe = self._store.subscribe(
                CASES_COLLECTION,
                case_id,
                lambda snapshot: self._on_snapshot(generation, snapshot),
                lambda exc: self._on_error(generation, exc),
            )
        except DocumentStoreDisabledError as exc:
            self._publish(ClientCaseState(project=None, loading=False, error=str(exc)))
            return

        with self._lock:
            still_wanted = generation == self._generation and self._state.error != NOT_FOUND_MESSAGE
            if still_wanted:
                self._unsubscribe = unsubscribe
        if not still_wanted:
            unsubscribe()

    def close(self):
        self._stop()
        with self._lock:
            self._generation += 1
            self._listeners = []

    def _stop(self):
        with self._lock:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def _on_snapshot(self, generation: int, snapshot: DocumentSnapshot):
        if generation != self._generation:
            return
        if not snapshot.exists:
            current_app.logger.info("Case %s not found for portal view", snapshot.doc_id)
            self._publish(ClientCaseState(project=None, loading=False, error=NOT_FOUND_MESSAGE))
            self._stop()
            return
        try:
            raw = RawCase.from_document(snapshot.doc_id, snapshot.data)
        except CaseSchemaError as exc:
            self._on_error(generation, exc)
            return
        project = raw_case_to_client_project(raw, now=self._clock())
        self._publish(ClientCaseState(project=project, loading=False, error=None))

    def _on_error(self, generation: int, exc: Exception):
        if generation != self._generation:
            return
        current_app.logger.warning("Case subscription error for %s: %s", self._case_id, exc)
        with self._lock:
            previous = self._state.project
        self._publish(ClientCaseState(project=previous, loading=False, error=str(exc)))

    def _publish(self, state: ClientCaseState):
        with self._lock:
            self._state = state
            listeners = list(self._listeners)
        for listener in listeners:
            listener(state)
