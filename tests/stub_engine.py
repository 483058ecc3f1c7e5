"""Stand-in for ffuf used by the scheduler tests.

Understands the subset of ffuf flags the fan-out passes (-w, -u, -o, -of, -t)
and is steered per partition through environment variables:

FANOUT_STUB_LEDGER      append ``start``/``end`` lines (label, pid, time) here
FANOUT_STUB_FAIL        comma separated chunk labels that exit with code 3
FANOUT_STUB_NO_OUTPUT   comma separated chunk labels that exit 0 without output
FANOUT_STUB_SLEEP       ``label=seconds`` pairs, ``*`` matches every chunk
FANOUT_STUB_INVALID     comma separated chunk labels that write invalid JSON
"""
from __future__ import annotations

import json
import os
import sys
import time
from pathlib import Path


def _labels(name: str) -> set:
    return {item.strip() for item in os.environ.get(name, "").split(",") if item.strip()}


def _sleep_for(label: str) -> float:
    delays = {}
    for item in os.environ.get("FANOUT_STUB_SLEEP", "").split(","):
        key, sep, value = item.partition("=")
        if sep:
            delays[key.strip()] = float(value)
    return delays.get(label, delays.get("*", 0.0))


def _ledger(event: str, label: str) -> None:
    path = os.environ.get("FANOUT_STUB_LEDGER")
    if not path:
        return
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(f"{event} {label} {os.getpid()} {time.time():.6f}\n")


def _strip_keyword(value: str) -> str:
    head, sep, tail = value.rpartition(":")
    if sep and tail.isupper():
        return head
    return value


def main(argv: list) -> int:
    wordlists = []
    output = None
    url = None
    index = 0
    while index < len(argv):
        flag = argv[index]
        value = argv[index + 1] if index + 1 < len(argv) else None
        if flag == "-w":
            wordlists.append(_strip_keyword(value))
        elif flag == "-o":
            output = value
        elif flag == "-u":
            url = value
        index += 2 if flag.startswith("-") and value is not None else 1

    chunk = Path(wordlists[0])
    label = chunk.stem
    _ledger("start", label)
    try:
        delay = _sleep_for(label)
        if delay:
            time.sleep(delay)
        print(f"stub scanning {chunk} against {url}", flush=True)
        if label in _labels("FANOUT_STUB_FAIL"):
            print("stub failure requested", file=sys.stderr)
            return 3
        if output and label not in _labels("FANOUT_STUB_NO_OUTPUT"):
            hosts = [line.strip() for line in chunk.read_text(encoding="utf-8").splitlines() if line.strip()]
            if label in _labels("FANOUT_STUB_INVALID"):
                Path(output).write_text("{not json", encoding="utf-8")
            else:
                payload = {"commandline": " ".join(argv), "results": [{"input": {"FUZZ": host}} for host in hosts]}
                Path(output).write_text(json.dumps(payload), encoding="utf-8")
        return 0
    finally:
        _ledger("end", label)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
