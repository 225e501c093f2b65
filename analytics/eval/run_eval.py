"""
Evaluation harness -- runs eval_questions.jsonl through the planner
and generates analytics/reports/eval_report.md.

Checks:
  - Metric correctness     (planned metric matches expected)
  - Breakdown correctness  (planned breakdowns match expected, order-independent)
  - Comparison correctness (previous_period vs none)
  - Window correctness     (time_range.n, when the question states one)
  - Rejection              (questions that must fail plan validation do)
  - Latency                (planning ms)

Runs in mock mode unless --mode is given; no warehouse access.
"""
from __future__ import annotations

import argparse
import asyncio
import datetime
import json
import sys
from pathlib import Path
from typing import Any

from src.copilot.planner import QueryPlanner
from src.core.errors import CopilotError, SchemaValidationError
from src.core.utils import timer

EVAL_PATH = Path(__file__).resolve().parent / "eval_questions.jsonl"
REPORT_PATH = Path(__file__).resolve().parents[1] / "reports" / "eval_report.md"


def _load_questions(path: Path = EVAL_PATH) -> list[dict[str, Any]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


async def _run_one(planner: QueryPlanner, q: dict[str, Any]) -> dict[str, Any]:
    """Plan a single question and score it against the expectations."""
    question = q["question"]
    expect_rejected = q.get("expect_rejected", False)

    with timer() as t:
        try:
            plan = await planner.plan(question)
            error = None
        except SchemaValidationError as exc:
            plan, error = None, str(exc)
        except CopilotError as exc:
            plan, error = None, f"{type(exc).__name__}: {exc}"

    if plan is None:
        return {
            "question": question,
            "error": error,
            "latency_ms": t["elapsed_ms"],
            "metric_ok": False,
            "breakdowns_ok": False,
            "comparison_ok": False,
            "window_ok": False,
            "rejected": True,
            "success": expect_rejected,
        }

    metric_ok = plan.metric == q.get("expected_metric")
    breakdowns_ok = set(plan.breakdowns) == set(q.get("expected_breakdowns", []))
    comparison_ok = plan.comparison.type == q.get("expected_comparison", "none")
    window_ok = "expected_n" not in q or plan.time_range.n == q["expected_n"]

    return {
        "question": question,
        "error": None,
        "latency_ms": t["elapsed_ms"],
        "metric_ok": metric_ok,
        "breakdowns_ok": breakdowns_ok,
        "comparison_ok": comparison_ok,
        "window_ok": window_ok,
        "rejected": False,
        "success": (not expect_rejected) and metric_ok and breakdowns_ok and comparison_ok and window_ok,
        "plan": plan.to_dict(),
    }


def _rate(hits: int, total: int) -> float:
    return (hits / total * 100) if total else 0


def _generate_report(results: list[dict[str, Any]], questions: list[dict[str, Any]], mode: str) -> str:
    """Generate the Markdown eval report."""
    total = len(results)
    now = datetime.datetime.now().strftime("%Y-%m-%d %H:%M")

    valid = [r for r, q in zip(results, questions) if not q.get("expect_rejected", False)]
    rejects = [r for r, q in zip(results, questions) if q.get("expect_rejected", False)]

    successes = sum(1 for r in results if r["success"])
    metric_ok = sum(1 for r in valid if r["metric_ok"])
    breakdowns_ok = sum(1 for r in valid if r["breakdowns_ok"])
    comparison_ok = sum(1 for r in valid if r["comparison_ok"])
    window_ok = sum(1 for r in valid if r["window_ok"])
    rejected_ok = sum(1 for r in rejects if r["rejected"])

    latencies = sorted(r["latency_ms"] for r in results)
    avg_lat = sum(latencies) / len(latencies) if latencies else 0
    p50_lat = latencies[len(latencies) // 2] if latencies else 0
    p95_lat = latencies[min(int(len(latencies) * 0.95), len(latencies) - 1)] if latencies else 0

    lines: list[str] = []
    lines.append("# Planner Evaluation Report")
    lines.append("")
    lines.append(f"> Generated: {now}  |  Questions: **{total}**  |  Mode: `{mode}`")
    lines.append("")
    lines.append("## Summary")
    lines.append("")
    lines.append("| Check | Value |")
    lines.append("|-------|-------|")
    lines.append(f"| Overall success rate | **{_rate(successes, total):.0f}%** ({successes}/{total}) |")
    lines.append(f"| Metric correctness | **{_rate(metric_ok, len(valid)):.0f}%** ({metric_ok}/{len(valid)}) |")
    lines.append(f"| Breakdown correctness | **{_rate(breakdowns_ok, len(valid)):.0f}%** ({breakdowns_ok}/{len(valid)}) |")
    lines.append(f"| Comparison correctness | **{_rate(comparison_ok, len(valid)):.0f}%** ({comparison_ok}/{len(valid)}) |")
    lines.append(f"| Window correctness | **{_rate(window_ok, len(valid)):.0f}%** ({window_ok}/{len(valid)}) |")
    lines.append(f"| Invalid plans rejected | **{_rate(rejected_ok, len(rejects)):.0f}%** ({rejected_ok}/{len(rejects)}) |")
    lines.append("")
    lines.append("## Latency")
    lines.append("")
    lines.append("| Stat | ms |")
    lines.append("|------|-----|")
    lines.append(f"| Mean | {avg_lat:.0f} |")
    lines.append(f"| p50 | {p50_lat} |")
    lines.append(f"| p95 | {p95_lat} |")
    lines.append("")
    lines.append("## Per-Question Results")
    lines.append("")
    lines.append("| # | Question | Metric | Breakdowns | Comparison | Window | Pass |")
    lines.append("|---|----------|--------|------------|------------|--------|------|")

    def ok(flag: bool) -> str:
        return "OK" if flag else "ERROR"

    for i, r in enumerate(results, 1):
        qtext = r["question"][:55] + ("..." if len(r["question"]) > 55 else "")
        if r["rejected"]:
            lines.append(f"| {i} | {qtext} | -- | -- | -- | -- | {ok(r['success'])} (rejected) |")
        else:
            lines.append(
                f"| {i} | {qtext} | {ok(r['metric_ok'])} | {ok(r['breakdowns_ok'])} | "
                f"{ok(r['comparison_ok'])} | {ok(r['window_ok'])} | {ok(r['success'])} |"
            )
    lines.append("")

    lines.append("## Failures")
    lines.append("")
    failures = [(i, r) for i, r in enumerate(results, 1) if not r["success"]]
    if not failures:
        lines.append("None -- all questions handled correctly.")
    for i, r in failures:
        lines.append(f"### #{i}: {r['question']}")
        lines.append("")
        if r.get("error"):
            lines.append(f"**Error:** `{r['error']}`")
        if r.get("plan"):
            lines.append(f"**Plan:** `{json.dumps(r['plan'])}`")
        lines.append("")

    return "\n".join(lines)


async def evaluate(mode: str = "mock", path: Path = EVAL_PATH) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    planner = QueryPlanner(mode=mode)
    if mode != "mock":
        from src.copilot.llm_client import LlmClient

        planner.llm = LlmClient(provider=mode)
    questions = _load_questions(path)
    results = [await _run_one(planner, q) for q in questions]
    return results, questions


def run():
    parser = argparse.ArgumentParser(description="Evaluate the question planner")
    parser.add_argument("--mode", default="mock", help="mock | openai | anthropic")
    args = parser.parse_args()

    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")  # type: ignore[attr-defined]

    results, questions = asyncio.run(evaluate(args.mode))
    for i, r in enumerate(results, 1):
        status = "PASS" if r["success"] else "FAIL"
        print(f"  [{i:2d}/{len(results)}] {status}  {r['question'][:60]:<60}  {r['latency_ms']:>4d}ms")

    report = _generate_report(results, questions, args.mode)
    REPORT_PATH.parent.mkdir(parents=True, exist_ok=True)
    REPORT_PATH.write_text(report, encoding="utf-8")
    print(f"\nReport written to {REPORT_PATH}")

    total = len(results)
    successes = sum(1 for r in results if r["success"])
    print(f"\n{'='*50}")
    print(f"  Success: {successes}/{total} ({_rate(successes, total):.0f}%)")
    print(f"{'='*50}")


if __name__ == "__main__":
    run()
