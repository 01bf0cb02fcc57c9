import asyncio

import pytest

from booktrack.controller import SearchController
from booktrack.errors import ErrorKind, NetworkError, SearchTimeoutError
from booktrack.state import Failed, Idle, QueryParameters, Results, Searching, SortOption


def test_controller_starts_idle(controller):
    assert controller.state == Idle()
    assert controller.query is None
    assert controller.params == QueryParameters()


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["", "   ", "\n\t ", None])
async def test_submit_ignores_empty_input(controller, service, recorded_states, raw):
    assert controller.submit(raw) is None
    await controller.wait_until_settled()

    assert controller.state == Idle()
    assert recorded_states == []
    assert service.calls == []


@pytest.mark.asyncio
async def test_submit_enters_searching_before_the_service_is_called(controller, service, recorded_states, make_books):
    service.results["Dune"] = make_books(2)

    controller.submit("  Dune  ")

    # Observable immediately, before the lookup task has run
    assert controller.state == Searching("Dune")
    assert service.calls == []

    await controller.wait_until_settled()
    assert service.calls == [("Dune", SortOption.RELEVANCE, False)]
    assert recorded_states == [Searching("Dune"), Results(tuple(make_books(2)), "Dune")]


@pytest.mark.asyncio
async def test_gatsby_scenario(controller, service, make_books):
    books = make_books(3, "Gatsby")
    service.results["Gatsby"] = books

    controller.submit("Gatsby")
    await controller.wait_until_settled()
    assert controller.state == Results(tuple(books), "Gatsby")
    assert controller.state.count == 3

    controller.submit("")
    await controller.wait_until_settled()
    assert controller.state == Results(tuple(books), "Gatsby")

    controller.clear()
    assert controller.state == Idle()


@pytest.mark.asyncio
async def test_empty_result_list_is_distinct_from_idle(controller):
    controller.submit("zzzzqqq")
    await controller.wait_until_settled()

    assert controller.state == Results((), "zzzzqqq")
    assert controller.state.count == 0
    assert controller.state != Idle()


@pytest.mark.asyncio
async def test_submit_with_explicit_params_uses_them(controller, service):
    params = QueryParameters(sort_by=SortOption.NEWEST, include_translations=True)
    controller.submit("Maya Angelou", params)
    await controller.wait_until_settled()

    assert service.calls == [("Maya Angelou", SortOption.NEWEST, True)]
    assert controller.params == params


@pytest.mark.asyncio
async def test_stale_response_never_overwrites_newer_query(manual_controller, manual_service, make_books):
    manual_controller.submit("first")
    await asyncio.sleep(0)
    manual_controller.submit("second")
    await asyncio.sleep(0)
    assert len(manual_service.pending) == 2

    second_books = make_books(1, "Second")
    manual_service.resolve(1, second_books)
    await asyncio.sleep(0)
    manual_service.resolve(0, make_books(2, "First"))
    await manual_controller.wait_until_settled()

    assert manual_controller.state == Results(tuple(second_books), "second")


@pytest.mark.asyncio
async def test_stale_failure_is_dropped(manual_controller, manual_service, make_books):
    manual_controller.submit("first")
    await asyncio.sleep(0)
    manual_controller.submit("second")
    await asyncio.sleep(0)

    manual_service.fail(0, NetworkError("Network error: offline", transport=True))
    await asyncio.sleep(0)
    assert manual_controller.state == Searching("second")

    manual_service.resolve(1, make_books(1))
    await manual_controller.wait_until_settled()
    assert isinstance(manual_controller.state, Results)


@pytest.mark.asyncio
async def test_same_query_submitted_twice_applies_latest_response(manual_controller, manual_service, make_books):
    manual_controller.submit("Dune")
    await asyncio.sleep(0)
    manual_controller.submit("Dune")
    await asyncio.sleep(0)

    latest = make_books(1, "Latest")
    manual_service.resolve(1, latest)
    manual_service.resolve(0, make_books(4, "Old"))
    await manual_controller.wait_until_settled()

    assert manual_controller.state == Results(tuple(latest), "Dune")


@pytest.mark.asyncio
@pytest.mark.parametrize("prior", ["idle", "searching", "results", "failed"])
async def test_clear_always_returns_to_idle(manual_controller, manual_service, make_books, prior):
    if prior != "idle":
        manual_controller.submit("Dune")
        await asyncio.sleep(0)
    if prior == "results":
        manual_service.resolve(0, make_books(1))
        await manual_controller.wait_until_settled()
    elif prior == "failed":
        manual_service.fail(0, RuntimeError("boom"))
        await manual_controller.wait_until_settled()

    manual_controller.clear()
    assert manual_controller.state == Idle()
    assert manual_controller.query is None


@pytest.mark.asyncio
async def test_response_after_clear_is_dropped(manual_controller, manual_service, make_books):
    manual_controller.submit("Dune")
    await asyncio.sleep(0)
    manual_controller.clear()

    manual_service.resolve(0, make_books(3))
    await manual_controller.wait_until_settled()

    assert manual_controller.state == Idle()


@pytest.mark.asyncio
async def test_clear_can_reset_params(controller):
    controller.set_sort(SortOption.NEWEST)
    controller.clear(reset_params=True)
    assert controller.params == QueryParameters()


# ------------------------- Failures and retry ------------------------- #

@pytest.mark.asyncio
async def test_network_failure_then_retry(service, make_books):
    controller = SearchController(service, retry_delay=0.05, requery_delay=0.01)
    service.errors["isbn:000"] = NetworkError("Network error: offline", transport=True)

    controller.submit("isbn:000")
    await controller.wait_until_settled()
    assert controller.state == Failed(
        "Please check your internet connection and try again.",
        ErrorKind.NETWORK_UNAVAILABLE,
        "isbn:000",
    )

    del service.errors["isbn:000"]
    service.results["isbn:000"] = make_books(1)
    loop = asyncio.get_running_loop()
    started = loop.time()

    controller.retry()
    assert controller.state == Searching("isbn:000")
    await asyncio.sleep(0)
    assert len(service.calls) == 1

    await controller.wait_until_settled()
    assert loop.time() - started >= 0.04
    assert len(service.calls) == 2
    assert controller.state == Results(tuple(make_books(1)), "isbn:000")


@pytest.mark.asyncio
async def test_timeout_failure_is_classified(controller, service):
    service.errors["slow"] = SearchTimeoutError("The request timed out")
    controller.submit("slow")
    await controller.wait_until_settled()

    assert controller.state == Failed("The search took too long. Please try again.", ErrorKind.TIMEOUT, "slow")


@pytest.mark.asyncio
async def test_unrecognized_failure_is_unknown(controller, service):
    service.errors["odd"] = ValueError("unexpected payload")
    controller.submit("odd")
    await controller.wait_until_settled()

    assert controller.state == Failed("Something went wrong. Please try again later.", ErrorKind.UNKNOWN, "odd")


@pytest.mark.asyncio
async def test_failed_state_is_not_retried_automatically(controller, service):
    service.errors["down"] = NetworkError("Network error", transport=True)
    controller.submit("down")
    await controller.wait_until_settled()
    await asyncio.sleep(0.05)

    assert len(service.calls) == 1
    assert isinstance(controller.state, Failed)


@pytest.mark.asyncio
async def test_retry_without_query_goes_idle(controller, service):
    assert controller.retry() is None
    assert controller.state == Idle()
    assert service.calls == []


@pytest.mark.asyncio
async def test_retry_after_clear_goes_idle(controller, service):
    controller.submit("Dune")
    await controller.wait_until_settled()
    controller.clear()

    controller.retry()
    await controller.wait_until_settled()
    assert controller.state == Idle()
    assert len(service.calls) == 1


@pytest.mark.asyncio
async def test_rapid_retries_reach_the_service_once(controller, service):
    service.errors["down"] = NetworkError("Network error", transport=True)
    controller.submit("down")
    await controller.wait_until_settled()

    controller.retry()
    controller.retry()
    controller.retry()
    await controller.wait_until_settled()

    assert len(service.calls) == 2


@pytest.mark.asyncio
async def test_submit_during_retry_delay_cancels_the_retry(controller, service):
    service.errors["down"] = NetworkError("Network error", transport=True)
    controller.submit("down")
    await controller.wait_until_settled()

    controller.retry()
    controller.submit("Dune")
    await controller.wait_until_settled()

    assert [call[0] for call in service.calls] == ["down", "Dune"]
    assert controller.state == Results((), "Dune")


# ------------------------- Parameter changes ------------------------- #

@pytest.mark.asyncio
async def test_toggling_translations_in_results_requeries_once(controller, service, make_books):
    books = make_books(3)
    service.results["Gatsby"] = books
    controller.submit("Gatsby")
    await controller.wait_until_settled()

    assert controller.set_include_translations(True) is True
    # The state is untouched until the re-query actually starts
    assert controller.state == Results(tuple(books), "Gatsby")

    await controller.wait_until_settled()
    assert service.calls == [
        ("Gatsby", SortOption.RELEVANCE, False),
        ("Gatsby", SortOption.RELEVANCE, True),
    ]
    assert controller.state == Results(tuple(books), "Gatsby")


@pytest.mark.asyncio
async def test_sort_change_in_failed_state_requeries(controller, service):
    service.errors["down"] = NetworkError("Network error", transport=True)
    controller.submit("down")
    await controller.wait_until_settled()

    assert controller.set_sort(SortOption.NEWEST) is True
    await controller.wait_until_settled()

    assert service.calls[-1] == ("down", SortOption.NEWEST, False)
    assert len(service.calls) == 2


@pytest.mark.asyncio
async def test_rapid_parameter_changes_are_coalesced(controller, service):
    controller.submit("Gatsby")
    await controller.wait_until_settled()

    controller.set_sort(SortOption.NEWEST)
    controller.set_sort(SortOption.POPULARITY)
    controller.toggle_translations()
    await controller.wait_until_settled()

    assert service.calls == [
        ("Gatsby", SortOption.RELEVANCE, False),
        ("Gatsby", SortOption.POPULARITY, True),
    ]


@pytest.mark.asyncio
async def test_parameter_change_while_idle_is_only_stored(controller, service):
    assert controller.set_sort(SortOption.NEWEST) is False
    await controller.wait_until_settled()

    assert controller.params.sort_by == SortOption.NEWEST
    assert service.calls == []

    controller.submit("Dune")
    await controller.wait_until_settled()
    assert service.calls == [("Dune", SortOption.NEWEST, False)]


@pytest.mark.asyncio
async def test_parameter_change_while_searching_is_only_stored(manual_controller, manual_service):
    manual_controller.submit("Dune")
    await asyncio.sleep(0)

    assert manual_controller.set_include_translations(True) is False
    manual_service.resolve(0, [])
    await manual_controller.wait_until_settled()

    assert len(manual_service.calls) == 1
    assert manual_controller.params.include_translations is True


@pytest.mark.asyncio
async def test_unchanged_parameters_do_not_requery(controller, service):
    controller.submit("Dune")
    await controller.wait_until_settled()

    assert controller.set_sort(SortOption.RELEVANCE) is False
    await controller.wait_until_settled()
    assert len(service.calls) == 1


@pytest.mark.asyncio
async def test_submit_cancels_pending_requery(controller, service):
    controller.submit("Gatsby")
    await controller.wait_until_settled()

    controller.set_sort(SortOption.NEWEST)
    controller.submit("Other")
    await controller.wait_until_settled()

    assert service.calls == [
        ("Gatsby", SortOption.RELEVANCE, False),
        ("Other", SortOption.NEWEST, False),
    ]


@pytest.mark.asyncio
async def test_clear_cancels_pending_requery(controller, service):
    controller.submit("Gatsby")
    await controller.wait_until_settled()

    controller.toggle_translations()
    controller.clear()
    await controller.wait_until_settled()

    assert len(service.calls) == 1
    assert controller.state == Idle()


# ------------------------- Observers ------------------------- #

@pytest.mark.asyncio
async def test_unsubscribe_stops_notifications(controller):
    states = []
    unsubscribe = controller.subscribe(states.append)

    controller.submit("Dune")
    await controller.wait_until_settled()
    unsubscribe()
    controller.clear()

    assert [s.name for s in states] == ["searching", "results"]


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(controller):
    def broken(state):
        raise RuntimeError("listener bug")

    states = []
    controller.subscribe(broken)
    controller.subscribe(states.append)

    controller.submit("Dune")
    await controller.wait_until_settled()

    assert [s.name for s in states] == ["searching", "results"]
    assert controller.state == Results((), "Dune")


@pytest.mark.asyncio
async def test_aclose_drops_inflight_requests(manual_controller, manual_service):
    manual_controller.submit("Dune")
    await asyncio.sleep(0)

    await manual_controller.aclose()

    assert manual_service.pending[0].cancelled()
    assert manual_controller.state == Searching("Dune")
