"""
Entry Point Tests

The gateway factory is patched to return the in-memory cluster.
"""

import pytest

from node_optimizer import main as entry
from node_optimizer.common.config import Settings
from node_optimizer.common.schemas import RunOutcome
from node_optimizer.services.reporter import NullReporter, SlackReporter

from fakes import FakeClusterGateway, make_cluster, make_node, make_pool


class RecordingReporter:
    def __init__(self):
        self.outcomes = []

    async def report(self, outcome):
        self.outcomes.append(outcome)


class TestEntryPoint:
    """Test suite for the run wiring"""

    @pytest.fixture
    def settings(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        return Settings(
            project_id="123456789012",
            cluster_name="test-cluster",
            cluster_location="us-east-1",
            eviction_backoff_seconds=0,
            node_pacing_seconds=0,
        )

    @pytest.fixture
    def gateway(self):
        pools = [make_pool("spot-pool", min_node_count=1), make_pool("ondemand-pool", preemptible=False)]
        nodes = [
            make_node("spot-old", age_hours=9, pods=1),
            make_node("spot-new", age_hours=1, pods=1),
            make_node("od-1", pool="ondemand-pool", preemptible=False, pods=2),
        ]
        return FakeClusterGateway(make_cluster(pools), nodes)

    @pytest.fixture
    def reporter(self, monkeypatch):
        reporter = RecordingReporter()
        monkeypatch.setattr(entry, "build_reporter", lambda settings: reporter)
        return reporter

    def test_build_reporter(self, settings):
        assert isinstance(entry.build_reporter(settings), NullReporter)

        slack = entry.build_reporter(settings.model_copy(update={
            "slack_bot_token": "xoxb-test", "slack_channel_id": "C0123",
        }))
        assert isinstance(slack, SlackReporter)

    @pytest.mark.asyncio
    async def test_run_reports_success(self, settings, gateway, reporter, monkeypatch):
        monkeypatch.setattr(entry.ClusterGateway, "from_settings", lambda settings: gateway)

        outcome = await entry.run(settings)

        assert outcome.succeeded
        assert outcome.project_id == "123456789012"
        assert reporter.outcomes == [outcome]
        assert gateway.deleted == ["spot-old"]

    @pytest.mark.asyncio
    async def test_gateway_failure_is_reported(self, settings, reporter, monkeypatch):
        def broken(settings):
            raise RuntimeError("no kube config")

        monkeypatch.setattr(entry.ClusterGateway, "from_settings", broken)

        outcome = await entry.run(settings)

        assert outcome.error == "no kube config"
        assert reporter.outcomes == [outcome]

    @pytest.mark.asyncio
    async def test_deadline_cancels_and_rolls_back(self, settings, gateway):
        settings = settings.model_copy(update={"node_pacing_seconds": 3600})
        optimizer = entry.build_optimizer(settings, gateway, RunOutcome())

        outcome = await entry.optimize_with_deadline(optimizer, timeout_seconds=0.2)

        assert outcome.error == "optimization deadline exceeded"
        assert gateway.deleted == ["spot-old"]
        assert gateway.unschedulable["od-1"] is False

    def test_main_exits_1_on_invalid_configuration(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("GNO_CLUSTER_NAME", raising=False)
        monkeypatch.setattr(entry, "setup_logging", lambda *args, **kwargs: None)
        entry.get_settings.cache_clear()

        with pytest.raises(SystemExit) as exc:
            entry.main()
        assert exc.value.code == 1
        entry.get_settings.cache_clear()
