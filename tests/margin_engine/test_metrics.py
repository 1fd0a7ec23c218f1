import boto3
from moto import mock_aws

from margin_engine.util.metrics import CloudWatchMetrics


def _metric_names(client, namespace: str) -> set:
    metrics = client.list_metrics(Namespace=namespace)["Metrics"]
    return {metric["MetricName"] for metric in metrics}


def test_disabled_metrics_never_create_a_client() -> None:
    metrics = CloudWatchMetrics.from_env()
    assert metrics.enabled is False
    assert metrics.client is None
    metrics.record_bulk_operation(strategy="flat", applied=1, skipped=0)


def test_enabled_metrics_publish_to_namespace(monkeypatch) -> None:
    monkeypatch.setenv("CLOUDWATCH_METRICS_ENABLED", "true")
    monkeypatch.setenv("CLOUDWATCH_METRICS_NAMESPACE", "MarginEngineTest")
    with mock_aws():
        metrics = CloudWatchMetrics.from_env()
        metrics.record_bulk_operation(strategy="target_margin", applied=4, skipped=1)
        metrics.record_transition_conflict(transition="approve")

        client = boto3.client("cloudwatch", region_name="us-east-1")
        assert _metric_names(client, "MarginEngineTest") == {
            "BulkItemsApplied",
            "BulkItemsSkipped",
            "WorkflowTransitionConflict",
        }
        skipped = client.list_metrics(Namespace="MarginEngineTest", MetricName="BulkItemsSkipped")
        dimensions = [metric["Dimensions"] for metric in skipped["Metrics"]]
        assert [{"Name": "strategy", "Value": "target_margin"}] in dimensions
