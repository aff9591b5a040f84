from __future__ import annotations

import argparse
import json
from pathlib import Path
from statistics import mean
from typing import Any

import httpx

# Demo directory ids: ORD-1004 is delivered (25 minutes late), CUST-1000 is a PRO
# member with no risk, CUST-1002 is a REGULAR member under the risk threshold.
DEFAULT_CASES: list[dict[str, Any]] = [
    {
        "id": "conv_wrong_order",
        "description": "Premium customer reports a wrong item shortly after delivery",
        "customer_id": "CUST-1000",
        "order_ids": ["ORD-1004"],
        "messages": ["I got the wrong order, this is not what I ordered"],
        "expected_keywords": ["redelivery"],
        "expect_escalated": False,
    },
    {
        "id": "conv_late_delivery",
        "description": "Regular customer complains about a late delivery",
        "customer_id": "CUST-1002",
        "order_ids": ["ORD-1004"],
        "messages": ["My food was delivered late"],
        "expected_keywords": ["credits"],
        "expect_escalated": False,
    },
    {
        "id": "conv_refund_request",
        "description": "Refund request on a recent order",
        "customer_id": "CUST-1002",
        "order_ids": ["ORD-1004"],
        "messages": ["I want a refund for this order"],
        "expected_keywords": ["refund of"],
        "expect_escalated": False,
    },
    {
        "id": "conv_frustration",
        "description": "Repeated frustration triggers automatic escalation",
        "customer_id": "CUST-1002",
        "order_ids": ["ORD-1004"],
        "messages": ["This is useless", "Honestly this is a waste of time"],
        "expected_keywords": ["support specialist"],
        "expect_escalated": True,
    },
    {
        "id": "conv_escalate",
        "description": "Customer asks for a human agent",
        "customer_id": "CUST-1002",
        "order_ids": ["ORD-1004"],
        "messages": ["I want to speak to a manager"],
        "expected_keywords": ["ticket"],
        "expect_escalated": True,
    },
]


def keyword_hits(text: str, keywords: list[str]) -> int:
    lowered = text.lower()
    return sum(1 for k in keywords if k.lower() in lowered)


def post_json(client: httpx.Client, base_url: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
    response = client.post(f"{base_url.rstrip('/')}{path}", json=payload)
    response.raise_for_status()
    return response.json()


def run_case(base_url: str, case: dict[str, Any]) -> dict[str, Any]:
    with httpx.Client(timeout=20.0) as client:
        start = post_json(
            client,
            base_url,
            "/api/conversation/start",
            {"customer_id": case["customer_id"], "order_ids": case.get("order_ids", [])},
        )
        session_id = start["session_id"]
        transcript: list[dict[str, Any]] = [{"role": "assistant", "text": start["message"]}]
        responses: list[dict[str, Any]] = []

        for text in case["messages"]:
            response = post_json(
                client,
                base_url,
                "/api/conversation/message",
                {"session_id": session_id, "message": text},
            )
            responses.append(response)
            transcript.append({"role": "user", "text": text})
            transcript.append({"role": "assistant", "text": response["response"], "escalated": response["escalated"]})

        ended = post_json(client, base_url, "/api/conversation/end", {"session_id": session_id})

    if not responses:
        raise ValueError("case_has_no_responses")

    last = responses[-1]
    keywords = case.get("expected_keywords", [])
    hits = keyword_hits(last["response"], keywords)
    escalation_ok = bool(last["escalated"]) == bool(case.get("expect_escalated", False))
    return {
        "case_id": case["id"],
        "description": case.get("description", ""),
        "task_success": hits == len(keywords) and escalation_ok,
        "turns": len(responses),
        "keyword_hit_rate": hits / len(keywords) if keywords else 1.0,
        "escalation_ok": escalation_ok,
        "ended": bool(ended.get("success")),
        "transcript": transcript,
    }


def aggregate_results(rows: list[dict[str, Any]]) -> dict[str, Any]:
    if not rows:
        return {
            "n": 0,
            "task_success_rate": 0.0,
            "avg_turns": 0.0,
            "keyword_hit_rate": 0.0,
            "escalation_accuracy": 0.0,
            "clean_end_rate": 0.0,
        }

    n = len(rows)
    return {
        "n": n,
        "task_success_rate": round(sum(1 for r in rows if r["task_success"]) / n, 4),
        "avg_turns": round(mean(r["turns"] for r in rows), 4),
        "keyword_hit_rate": round(mean(r["keyword_hit_rate"] for r in rows), 4),
        "escalation_accuracy": round(sum(1 for r in rows if r["escalation_ok"]) / n, 4),
        "clean_end_rate": round(sum(1 for r in rows if r["ended"]) / n, 4),
    }


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Multi-turn conversation evaluation against a running server.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--cases", type=Path, default=None, help="Optional JSON file for case list")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("eval/results/conversation_eval_report.json"),
    )
    parser.add_argument(
        "--transcripts-output",
        type=Path,
        default=Path("eval/results/conversation_transcripts.jsonl"),
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    cases = DEFAULT_CASES
    if args.cases is not None:
        cases = json.loads(args.cases.read_text(encoding="utf-8"))

    details = [run_case(args.base_url, case) for case in cases]
    metrics = aggregate_results(details)
    report = {"config": {"base_url": args.base_url, "cases": len(cases)}, "metrics": metrics, "details": details}

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(report, ensure_ascii=False, indent=2), encoding="utf-8")

    args.transcripts_output.parent.mkdir(parents=True, exist_ok=True)
    with args.transcripts_output.open("w", encoding="utf-8") as fh:
        for row in details:
            payload = {"case_id": row["case_id"], "description": row["description"], "transcript": row["transcript"]}
            fh.write(json.dumps(payload, ensure_ascii=False) + "\n")

    print(
        json.dumps(
            {
                "metrics": metrics,
                "output": str(args.output),
                "transcripts": str(args.transcripts_output),
            },
            ensure_ascii=True,
        )
    )


if __name__ == "__main__":
    main()
