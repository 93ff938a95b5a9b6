from __future__ import annotations

from unittest.mock import Mock

import pytest

from mysql_backup_restore.scheduler import AgentScheduler, SchedulingError
from mysql_backup_restore.waiter import TransientObservationError


def test_select_member_returns_current_primary() -> None:
    topology = Mock()
    topology.get_primary_member.return_value = "db1-0"

    member = AgentScheduler(topology).select_member(cluster="db1", namespace="e2e")

    assert member == "db1-0"
    topology.get_primary_member.assert_called_once_with(cluster="db1", namespace="e2e")


@pytest.mark.parametrize("primary", [None, "", "  "])
def test_select_member_without_primary_raises_scheduling_error(primary: str | None) -> None:
    topology = Mock()
    topology.get_primary_member.return_value = primary

    with pytest.raises(SchedulingError, match="no primary member"):
        AgentScheduler(topology).select_member(cluster="db1", namespace="e2e")


def test_select_member_with_topology_failure_raises_scheduling_error() -> None:
    topology = Mock()
    topology.get_primary_member.side_effect = RuntimeError("cluster reports 2 primary members")

    with pytest.raises(SchedulingError, match="2 primary members") as raised:
        AgentScheduler(topology).select_member(cluster="db1", namespace="e2e")

    assert isinstance(raised.value.__cause__, RuntimeError)


@pytest.mark.parametrize(
    "error",
    [TransientObservationError("API status 503 (Service Unavailable)"), ConnectionError("connection reset")],
)
def test_select_member_with_transient_topology_error_propagates_it(error: Exception) -> None:
    topology = Mock()
    topology.get_primary_member.side_effect = error

    with pytest.raises(type(error)) as raised:
        AgentScheduler(topology).select_member(cluster="db1", namespace="e2e")

    assert not isinstance(raised.value, SchedulingError)
