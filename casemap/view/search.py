"""
Debounced case search.

Each keystroke restarts a quiet-period timer; when it expires the current
text is executed:
1. local case-insensitive substring match over the loaded cases
2. if nothing matches, remote search via the case API, keeping only cases
   with a location

Dispatched searches are never cancelled. A result is applied only if the
text it was dispatched for is still the current text and the view is
still active.
"""

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Optional, Set

from ..cases.client import Case, CasesClient
from ..errors import CaseFetchError

logger = logging.getLogger(__name__)

SEARCH_QUIET_PERIOD_SEC = 0.3
DETAIL_ZOOM = 16


def case_matches(case: Case, needle: str) -> bool:
    needle = needle.strip().lower()
    if not needle:
        return False
    haystack = (
        case.first_name,
        case.last_name,
        case.full_name,
        case.last_seen_location,
        str(case.id),
    )
    return any(needle in (value or "").lower() for value in haystack)


class SearchController:
    """
    Usage:
        search = SearchController(cases_client)
        search.set_cases(loaded_cases)
        search.bind(fitter)

        search.on_input("ab")            # fire-and-forget, debounced
        results = await search.query("abdou")
        search.select(results[0])
    """

    def __init__(
        self,
        cases_client: CasesClient,
        quiet_period: float = SEARCH_QUIET_PERIOD_SEC,
        detail_zoom: float = DETAIL_ZOOM,
        is_active: Optional[Callable[[], bool]] = None,
    ):
        self.client = cases_client
        self.quiet_period = quiet_period
        self.detail_zoom = detail_zoom
        self._is_active = is_active or (lambda: True)
        self.fitter = None

        self.cases: List[Case] = []
        self.text = ""
        self.results: List[Case] = []
        self.selected: Optional[Case] = None
        self.error: Optional[str] = None
        self.searching = False
        self.execution_count = 0

        self._timer: Optional[asyncio.TimerHandle] = None
        self._waiters: List[asyncio.Future] = []
        self._tasks: Set[asyncio.Task] = set()

    def bind(self, fitter: Any):
        """Camera control used when a result is selected."""
        self.fitter = fitter

    def set_cases(self, cases: Iterable[Case]):
        self.cases = list(cases)

    def match_local(self, text: str) -> List[Case]:
        return [c for c in self.cases if case_matches(c, text)]

    # ---- input ----

    def on_input(self, text: str):
        """Record a keystroke and restart the quiet-period timer."""
        self.text = text
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if not text.strip():
            self.results = []
            self.error = None
            self.searching = False
            self._resolve_waiters([])
            return

        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.quiet_period, self._dispatch)

    async def query(self, text: str) -> List[Case]:
        """Debounced search; resolves with the results applied for the latest text."""
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self.on_input(text)
        return await waiter

    def _dispatch(self):
        self._timer = None
        task = asyncio.ensure_future(self._execute(self.text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, text: str):
        self.execution_count += 1
        results = self.match_local(text)

        if not results:
            self.searching = True
            try:
                remote = await self.client.search_cases(text)
            except CaseFetchError as e:
                if self._is_current(text):
                    logger.error(f"Remote search for {text!r} failed: {e}")
                    self.searching = False
                    self.error = str(e)
                    self._reject_waiters(e)
                return
            results = [c for c in remote if c.location is not None]

        if not self._is_current(text):
            logger.debug(f"Discarding stale search results for {text!r}")
            return

        self.searching = False
        self.error = None
        self.results = results
        logger.debug(f"Search {text!r}: {len(results)} results")
        self._resolve_waiters(results)

    def _is_current(self, text: str) -> bool:
        return self._is_active() and text == self.text

    def _resolve_waiters(self, results: List[Case]):
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(list(results))

    def _reject_waiters(self, error: Exception):
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error)

    # ---- selection ----

    def select(self, case: Case):
        """Centre the map on case at detail zoom and remember the selection."""
        self.selected = case
        location = case.location
        if location is None:
            logger.debug(f"Selected case {case.id} has no location; camera unchanged")
            return
        if self.fitter is not None:
            self.fitter.focus(location, self.detail_zoom)

    def find_result(self, case_id: Any) -> Optional[Case]:
        for case in self.results:
            if str(case.id) == str(case_id):
                return case
        return None

    def clear(self):
        """Reset text, results and selection; pending queries resolve empty."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.text = ""
        self.results = []
        self.selected = None
        self.error = None
        self.searching = False
        self._resolve_waiters([])
