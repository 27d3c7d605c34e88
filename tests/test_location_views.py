import random
from datetime import timedelta, timezone

from tracking_fakes import sample, ts

from location_models import Agent
from location_views import (
    NeverSeen,
    OfflineSince,
    Online,
    ViewMemo,
    agent_statuses,
    build_route,
    classify_status,
    latest_positions,
    online_count,
)


def _scenario():
    return [
        sample("A", ts(10, 0), 1.0, 1.0),
        sample("A", ts(10, 5), 2.0, 2.0),
        sample("B", ts(9, 50), 3.0, 3.0),
    ]


def test_latest_positions_keeps_one_entry_per_agent_with_max_timestamp():
    samples = [
        sample("A", ts(10, 5), 2.0, 2.0),
        sample("B", ts(9, 50), 3.0, 3.0),
        sample("A", ts(10, 0), 1.0, 1.0),
        sample("C", ts(8, 0), 4.0, 4.0),
        sample("B", ts(9, 40), 5.0, 5.0),
    ]
    latest = latest_positions(samples)
    assert set(latest) == {"A", "B", "C"}
    for agent_id, entry in latest.items():
        assert entry.timestamp == max(s.timestamp for s in samples if s.agent_id == agent_id)
    assert latest["A"].coords == (2.0, 2.0)


def test_latest_positions_does_not_mutate_input_and_handles_empty():
    samples = _scenario()
    snapshot = list(samples)
    latest_positions(samples)
    assert samples == snapshot
    assert latest_positions([]) == {}


def test_latest_positions_tie_prefers_later_sample():
    first = sample("A", ts(10, 0), 1.0, 1.0)
    second = sample("A", ts(10, 0), 9.0, 9.0)
    assert latest_positions([first, second])["A"] is second
    assert latest_positions([second, first])["A"] is first


def test_classify_status_thresholds():
    last = sample("A", ts(10, 0), 1.0, 1.0)
    assert classify_status(last, ts(10, 4, 59)) == Online(ts(10, 0))
    assert classify_status(last, ts(10, 5)) == OfflineSince(ts(10, 0))
    assert classify_status(None, ts(10, 5)) == NeverSeen()
    assert classify_status(last, ts(10, 1), threshold=timedelta(seconds=30)) == OfflineSince(ts(10, 0))


def test_classify_status_is_deterministic():
    last = sample("A", ts(10, 0), 1.0, 1.0)
    assert classify_status(last, ts(10, 2)) == classify_status(last, ts(10, 2))


def test_status_labels():
    assert Online(ts(10, 5)).label() == "Online - 10:05:00"
    assert OfflineSince(ts(9, 50)).label(timezone(timedelta(hours=-3))) == "Offline since 06:50:00"
    assert NeverSeen().label() == "Offline"


def test_scenario_statuses_and_route():
    samples = _scenario()
    latest = latest_positions(samples)
    now = ts(10, 6)
    assert classify_status(latest["A"], now) == Online(ts(10, 5))
    assert classify_status(latest["B"], now) == OfflineSince(ts(9, 50))
    route = build_route(samples, "A")
    assert [(s.timestamp, s.latitude, s.longitude) for s in route] == [
        (ts(10, 0), 1.0, 1.0),
        (ts(10, 5), 2.0, 2.0),
    ]


def test_build_route_sorts_regardless_of_input_order():
    ordered = [sample("A", ts(10, m), float(m), float(m)) for m in range(0, 50, 5)]
    shuffled = list(ordered)
    random.Random(7).shuffle(shuffled)
    shuffled.append(sample("B", ts(10, 1), 0.0, 0.0))
    assert build_route(shuffled, "A") == ordered
    assert build_route(shuffled, "A") == build_route(shuffled, "A")


def test_build_route_empty_for_unknown_agent():
    assert build_route(_scenario(), "Z") == []


def test_agent_statuses_follow_roster_and_count_online():
    roster = [Agent("A", "Ana"), Agent("B", "Bruno"), Agent("C", "Carla")]
    rows = agent_statuses(roster, latest_positions(_scenario()), ts(10, 6))
    assert [row.agent.id for row in rows] == ["A", "B", "C"]
    assert isinstance(rows[0].status, Online)
    assert isinstance(rows[1].status, OfflineSince)
    assert isinstance(rows[2].status, NeverSeen)
    assert online_count(rows) == 1
    payload = rows[2].to_dict()
    assert payload["status"] == "NeverSeen"
    assert payload["latest"] is None


def test_view_memo_recomputes_only_on_changed_input():
    memo = ViewMemo(latest_positions)
    samples = tuple(_scenario())
    first = memo(samples)
    assert memo(samples) is first
    assert memo.computations == 1
    memo(samples[:1])
    assert memo.computations == 2
