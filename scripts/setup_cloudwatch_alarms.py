from __future__ import annotations

import argparse
from typing import Optional

import boto3


def _alarm_name(prefix: str, name: str, strategy: Optional[str]) -> str:
    if strategy:
        return f"{prefix}-{strategy}-{name}"
    return f"{prefix}-{name}"


def _dimensions(name: str, value: Optional[str]) -> list[dict]:
    if not value:
        return []
    return [{"Name": name, "Value": value}]


def _alarm_actions(topic_arn: Optional[str]) -> list[str]:
    if not topic_arn:
        return []
    return [topic_arn]


def main() -> None:
    parser = argparse.ArgumentParser(description="Create CloudWatch alarms for the margin engine")
    parser.add_argument("--alarm-prefix", default="margin-engine", help="Alarm name prefix")
    parser.add_argument(
        "--namespace",
        default="MarginEngine",
        help="CloudWatch namespace for custom metrics",
    )
    parser.add_argument("--sns-topic-arn", help="SNS topic ARN for alarm actions")
    parser.add_argument(
        "--strategy",
        choices=["flat", "target_margin", "competitor_aligned"],
        help="Optional strategy kind for a per-strategy skip alarm",
    )
    parser.add_argument(
        "--skipped-threshold",
        type=int,
        default=50,
        help="Skipped bulk items per period before alarming",
    )
    parser.add_argument(
        "--skipped-period",
        type=int,
        default=300,
        help="Period in seconds for the skipped items alarm",
    )
    parser.add_argument(
        "--conflict-threshold",
        type=int,
        default=10,
        help="Approval conflicts per period before alarming",
    )
    parser.add_argument(
        "--conflict-period",
        type=int,
        default=300,
        help="Period in seconds for the approval conflict alarm",
    )
    parser.add_argument(
        "--conflict-evaluation-periods",
        type=int,
        default=1,
        help="Evaluation periods for the approval conflict alarm",
    )

    args = parser.parse_args()

    cloudwatch = boto3.client("cloudwatch")
    alarm_actions = _alarm_actions(args.sns_topic_arn)

    cloudwatch.put_metric_alarm(
        AlarmName=_alarm_name(args.alarm_prefix, "bulk-skipped", args.strategy),
        AlarmDescription=(
            "Triggers when bulk price operations skip many SKUs. "
            "Skips come from invalid parameters or prices that would go negative."
        ),
        Namespace=args.namespace,
        MetricName="BulkItemsSkipped",
        Dimensions=_dimensions("strategy", args.strategy),
        Statistic="Sum",
        Period=args.skipped_period,
        EvaluationPeriods=1,
        DatapointsToAlarm=1,
        Threshold=args.skipped_threshold,
        ComparisonOperator="GreaterThanOrEqualToThreshold",
        TreatMissingData="notBreaching",
        AlarmActions=alarm_actions,
        OKActions=alarm_actions,
    )

    cloudwatch.put_metric_alarm(
        AlarmName=_alarm_name(args.alarm_prefix, "approval-conflicts", None),
        AlarmDescription="Triggers on repeated approve/reject calls against resolved updates.",
        Namespace=args.namespace,
        MetricName="WorkflowTransitionConflict",
        Dimensions=[],
        Statistic="Sum",
        Period=args.conflict_period,
        EvaluationPeriods=args.conflict_evaluation_periods,
        DatapointsToAlarm=args.conflict_evaluation_periods,
        Threshold=args.conflict_threshold,
        ComparisonOperator="GreaterThanOrEqualToThreshold",
        TreatMissingData="notBreaching",
        AlarmActions=alarm_actions,
        OKActions=alarm_actions,
    )


if __name__ == "__main__":
    main()
