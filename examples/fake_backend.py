"""Stand-in render backend that follows the benchmark's backend contract.

Single mode:  fake_backend.py [options] <output.pdf>
Batch mode:   fake_backend.py [options] --sequential <out1.pdf> ... <outN.pdf>

Writes a tiny PDF per output, prints ``PDF saved to: <path>`` for each,
reports a memory line and exits 0 only if every artifact was written.
"""

import argparse
import sys
import time
from pathlib import Path

MINIMAL_PDF = (
    b"%PDF-1.4\n1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
    b"2 0 obj<</Type/Pages/Kids[]/Count 0>>endobj\n"
    b"trailer<</Root 1 0 R>>\n%%EOF\n"
)


def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--delay", type=float, default=0.0, help="Seconds before rendering each PDF.")
    p.add_argument("--linger", type=float, default=0.0, help="Seconds to stay alive after the last PDF.")
    p.add_argument("--hang", action="store_true", help="Never exit after rendering.")
    p.add_argument("--exit-code", type=int, default=None, help="Force this exit code.")
    p.add_argument("--skip-artifact", action="store_true", help="Print the marker but write no file.")
    p.add_argument("--no-marker", action="store_true", help="Write files without printing the marker.")
    p.add_argument("--fail-index", type=int, default=None, help="1-based PDF that fails in batch mode.")
    p.add_argument("--peak-mb", type=float, default=42.0)
    p.add_argument("--sequential", action="store_true")
    p.add_argument("outputs", nargs="*")
    return p.parse_args()


def main():
    args = parse_args()
    if not args.outputs:
        print("[ERROR] no output path given", file=sys.stderr)
        return 1

    if args.sequential:
        print(f"Starting sequential PDF generation for {len(args.outputs)} PDFs", flush=True)

    ok = 0
    for index, output in enumerate(args.outputs, start=1):
        time.sleep(args.delay)
        if args.fail_index == index:
            print(f"[ERROR] Failed to generate PDF {index}/{len(args.outputs)}", file=sys.stderr, flush=True)
            continue
        path = Path(output)
        if not args.skip_artifact:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(MINIMAL_PDF)
        if not args.no_marker:
            print(f"PDF saved to: {path}", flush=True)
        ok += 1

    print(f"Memory usage: {args.peak_mb / 2:.2f} MB (peak: {args.peak_mb:.2f} MB, delta: 1.00 MB)", flush=True)
    if args.sequential:
        print(f"Sequential generation completed: {ok}/{len(args.outputs)} PDFs generated successfully.", flush=True)

    if args.hang:
        while True:
            time.sleep(1)
    time.sleep(args.linger)

    if args.exit_code is not None:
        return args.exit_code
    return 0 if ok == len(args.outputs) else 1


if __name__ == "__main__":
    sys.exit(main())
