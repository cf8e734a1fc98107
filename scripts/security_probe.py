from __future__ import annotations

import argparse
import json
import sys
import unicodedata
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timezone
from typing import Literal, TypedDict


class HttpResult(TypedDict):
    status: int
    headers: dict[str, str]
    body: bytes


class Finding(TypedDict):
    severity: Literal["high", "medium", "low", "info"]
    title: str
    affected_endpoints: list[str]
    description: str
    repro_steps: list[str]
    evidence: dict[str, object]


INJECTION_CORPUS = [
    "'; DROP TABLE events; --",
    "1' OR '1'='1",
    "abc UNION SELECT access_token FROM events",
    "x; DELETE FROM posts",
    "evt/* comment */",
    "<script>alert(1)</script>",
    "javascript:alert(1)",
    '<img src=x onerror="alert(1)">',
    "<iframe src=//evil>",
    "evt'; WAITFOR DELAY '0:0:5'--",
]

QR_CORPUS = [
    "javascript:alert(1)//event/abc",
    "data:text/html,<script>alert(1)</script>",
    "https://eventlens.app/event/<script>alert(1)</script>",
    "https://eventlens.app/event/" + "a" * 101,
    "not a url",
]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _json_bytes(payload: object) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _http_request(
    *,
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    json_body: object | None = None,
    timeout_s: float = 15.0,
) -> HttpResult:
    data = None if json_body is None else _json_bytes(json_body)
    request_headers = {
        "User-Agent": "EventLens-SecurityProbe/1.0",
        "Accept": "application/json, text/plain, */*",
    }
    if data is not None:
        request_headers["Content-Type"] = "application/json"
    if headers:
        request_headers.update(headers)
    req = urllib.request.Request(url, data=data, headers=request_headers, method=method)
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return {
                "status": int(resp.status),
                "headers": {k.lower(): v for k, v in resp.headers.items()},
                "body": resp.read(),
            }
    except urllib.error.HTTPError as exc:
        return {
            "status": int(exc.code),
            "headers": {k.lower(): v for k, v in exc.headers.items()},
            "body": exc.read(),
        }


def _json(result: HttpResult) -> object:
    if not result["body"]:
        return None
    try:
        return json.loads(result["body"].decode("utf-8"))
    except ValueError:
        return None


def _error_kind(result: HttpResult) -> str | None:
    data = _json(result)
    if isinstance(data, dict):
        return data.get("error")
    return None


def _event_url(base_url: str, event_id: str, suffix: str = "access") -> str:
    return f"{base_url}/api/v1/events/{urllib.parse.quote(event_id, safe='')}/{suffix}"


def _expect(
    *,
    findings: list[Finding],
    title: str,
    resp: HttpResult,
    method: str,
    url: str,
    expected: set[int],
    sample: str,
    severity_on_mismatch: Literal["high", "medium", "low", "info"] = "high",
) -> None:
    if resp["status"] in expected:
        return
    findings.append(
        {
            "severity": severity_on_mismatch,
            "title": title,
            "affected_endpoints": [f"{method} {urllib.parse.urlparse(url).path}"],
            "description": (
                f"Expected HTTP {sorted(expected)} but got {resp['status']}."
            ),
            "repro_steps": [f"Send `{method}` with input `{sample[:80]}`."],
            "evidence": {
                "expected_status": sorted(expected),
                "actual_status": resp["status"],
                "error_kind": _error_kind(resp),
                "body_prefix": resp["body"][:200].decode("utf-8", errors="replace"),
            },
        }
    )


def run_probe(
    *,
    base_url: str,
    event_id: str,
    event_token: str | None,
    owner_id: str | None,
) -> tuple[list[Finding], dict]:
    findings: list[Finding] = []
    meta: dict[str, object] = {
        "base_url": base_url,
        "started_at": _utcnow().isoformat(),
        "event_id": event_id,
        "requests": 0,
        "notes": [],
    }

    # 1) Injection and markup payloads as event ids must be rejected before lookup.
    for sample in INJECTION_CORPUS:
        url = _event_url(base_url, sample)
        resp = _http_request(method="GET", url=url)
        meta["requests"] += 1
        _expect(
            findings=findings,
            title="Injection payload accepted as event id",
            resp=resp,
            method="GET",
            url=url,
            expected={400, 404},
            sample=sample,
        )
        if resp["status"] == 200:
            meta["notes"].append(f"Payload resolved to an event: {sample!r}")

    # 2) Oversized identifiers.
    oversized = "e" * 256
    url = _event_url(base_url, oversized)
    resp = _http_request(method="GET", url=url)
    meta["requests"] += 1
    _expect(
        findings=findings,
        title="Oversized event id not rejected",
        resp=resp,
        method="GET",
        url=url,
        expected={400},
        sample=oversized,
        severity_on_mismatch="medium",
    )

    # 3) A wrong token must not reveal whether the event exists.
    url = _event_url(base_url, event_id, "feed")
    resp = _http_request(
        method="GET", url=url, headers={"Authorization": "Bearer not-a-real-token"}
    )
    meta["requests"] += 1
    _expect(
        findings=findings,
        title="Feed reachable with a forged token",
        resp=resp,
        method="GET",
        url=url,
        expected={200, 404, 410},
        sample="Bearer not-a-real-token",
    )
    data = _json(resp)
    if resp["status"] == 200 and isinstance(data, dict):
        leaked = [
            post
            for post in data.get("posts") or []
            if isinstance(post, dict) and post.get("visibility") != "public"
        ]
        if leaked:
            findings.append(
                {
                    "severity": "high",
                    "title": "Non-public posts returned for a forged token",
                    "affected_endpoints": ["GET /api/v1/events/{event_id}/feed"],
                    "description": "Posts above the public tier were visible without a valid token.",
                    "repro_steps": [
                        "Call the feed with `Authorization: Bearer not-a-real-token`.",
                    ],
                    "evidence": {"leaked_posts": len(leaked)},
                }
            )

    # 4) Composed and decomposed spellings of the same id must behave the same.
    composed = unicodedata.normalize("NFC", event_id)
    decomposed = unicodedata.normalize("NFD", event_id)
    if composed != decomposed:
        statuses = []
        for variant in (composed, decomposed):
            variant_url = _event_url(base_url, variant)
            headers = {"X-Event-Token": event_token} if event_token else None
            statuses.append(
                _http_request(method="GET", url=variant_url, headers=headers)["status"]
            )
            meta["requests"] += 1
        if statuses[0] != statuses[1]:
            findings.append(
                {
                    "severity": "medium",
                    "title": "Unicode normalization mismatch",
                    "affected_endpoints": ["GET /api/v1/events/{event_id}/access"],
                    "description": "NFC and NFD spellings of one event id resolved differently.",
                    "repro_steps": ["Request the event with both normalization forms."],
                    "evidence": {"statuses": statuses},
                }
            )

    # 5) The QR endpoint is owner only.
    url = _event_url(base_url, event_id, "qr")
    resp = _http_request(method="GET", url=url, headers={"X-Viewer-Id": "probe-visitor"})
    meta["requests"] += 1
    _expect(
        findings=findings,
        title="QR payload issued to a non-owner",
        resp=resp,
        method="GET",
        url=url,
        expected={403, 404, 410},
        sample="X-Viewer-Id: probe-visitor",
    )
    if owner_id:
        resp = _http_request(method="GET", url=url, headers={"X-Viewer-Id": owner_id})
        meta["requests"] += 1
        _expect(
            findings=findings,
            title="QR payload refused for the owner",
            resp=resp,
            method="GET",
            url=url,
            expected={200, 410},
            sample=f"X-Viewer-Id: {owner_id}",
            severity_on_mismatch="low",
        )

    # 6) Hostile scanned payloads.
    url = f"{base_url}/api/v1/qr/resolve"
    for sample in QR_CORPUS:
        resp = _http_request(method="POST", url=url, json_body={"payload": sample})
        meta["requests"] += 1
        _expect(
            findings=findings,
            title="Hostile QR payload accepted",
            resp=resp,
            method="POST",
            url=url,
            expected={400},
            sample=sample,
        )

    meta["finished_at"] = _utcnow().isoformat()
    return findings, meta


def _render_report(*, findings: list[Finding], meta: dict) -> str:
    lines = [
        "# EventLens security probe report",
        "",
        f"- Target: `{meta.get('base_url')}`",
        f"- Started: `{meta.get('started_at')}`",
        f"- Requests sent: `{meta.get('requests')}`",
        "",
        "## Findings",
        "",
    ]
    if not findings:
        lines.append("- No issues detected by this probe.")
        return "\n".join(lines) + "\n"

    for idx, finding in enumerate(findings, start=1):
        lines.append(f"### {idx}. [{finding['severity'].upper()}] {finding['title']}")
        lines.append("")
        lines.append("**Affected endpoints**")
        for ep in finding["affected_endpoints"]:
            lines.append(f"- `{ep}`")
        lines.append("")
        lines.append("**Description**")
        lines.append(f"- {finding['description']}")
        lines.append("")
        lines.append("**Repro (tokens redacted)**")
        for step in finding["repro_steps"]:
            lines.append(f"- {step}")
        lines.append("")
        lines.append("**Evidence (sanitized)**")
        for key, value in finding["evidence"].items():
            lines.append(f"- `{key}`: `{value}`")
        lines.append("")

    return "\n".join(lines) + "\n"


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Authorized EventLens dev security probe")
    parser.add_argument(
        "--base-url",
        required=True,
        help="Base URL for the target EventLens instance",
    )
    parser.add_argument("--event-id", required=True, help="Existing event to probe")
    parser.add_argument(
        "--event-token",
        default=None,
        help="Capability token for the event (see `eventlens event-token`)",
    )
    parser.add_argument("--owner-id", default=None, help="Owner id of the event")
    parser.add_argument(
        "--out-json",
        default="security_probe_results.json",
        help="Write raw results JSON to this path (default: %(default)s)",
    )
    parser.add_argument(
        "--out-report",
        default="security_probe_report.md",
        help="Write markdown report to this path (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    findings, meta = run_probe(
        base_url=args.base_url.rstrip("/"),
        event_id=args.event_id,
        event_token=args.event_token,
        owner_id=args.owner_id,
    )

    with open(args.out_json, "w", encoding="utf-8") as handle:
        json.dump({"meta": meta, "findings": findings}, handle, indent=2, ensure_ascii=False)
        handle.write("\n")

    with open(args.out_report, "w", encoding="utf-8") as handle:
        handle.write(_render_report(findings=findings, meta=meta))

    print(f"Wrote `{args.out_json}` and `{args.out_report}`")
    print(f"Findings: {len(findings)} (high/medium/low/info)")
    for finding in findings:
        print(f"- {finding['severity']}: {finding['title']}")

    return 0 if not any(f["severity"] in {"high", "medium"} for f in findings) else 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
