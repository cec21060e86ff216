from __future__ import annotations

from typing import Any


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def render_markdown(summary: dict[str, Any]) -> str:
    stack = summary["stack"]
    units = summary["units"]
    problems = summary["problems"]
    timeline = summary["timeline"]

    lines: list[str] = []
    lines.append("# Stack Report")
    lines.append("")
    lines.append("## Overview")
    lines.append("")
    lines.append(f"- stack: {stack['name'] or '(unnamed)'}")
    lines.append(f"- status: **{stack['status']}**")
    lines.append(f"- units: {stack['units']}")
    failed = ", ".join(f"`{name}`" for name in stack["failed"]) or "(none)"
    lines.append(f"- failed: {failed}")
    lines.append("")
    lines.append("## Units")
    lines.append("")
    lines.append("| unit | status | attempts | restarts | ever_healthy | last_probe | latency_ms |")
    lines.append("|---|---|---:|---:|---|---|---:|")
    for row in units:
        latency = "-" if row["last_latency_ms"] is None else row["last_latency_ms"]
        lines.append(
            f"| {row['name']} | {row['status']} | {row['attempts']} | {row['restarts']} | "
            f"{_yes_no(row['ever_healthy'])} | {row['last_probe'] or '-'} | {latency} |"
        )
    lines.append("")
    lines.append("## Failed Units")
    lines.append("")
    if problems:
        for row in problems:
            lines.append(f"### {row['name']}")
            lines.append(f"- reason: `{row['reason']}`")
            if row["stderr_tail"]:
                lines.append("- stderr tail:")
                lines.append("```")
                lines.extend(row["stderr_tail"])
                lines.append("```")
            lines.append("")
    else:
        lines.append("No failed units.")
        lines.append("")
    lines.append("## Timeline")
    lines.append("")
    for row in timeline:
        reason = f" ({row['reason']})" if row["reason"] else ""
        lines.append(f"- {row['timestamp']} `{row['unit']}` {row['transition']}{reason}")
    lines.append("")
    return "\n".join(lines)
