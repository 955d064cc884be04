"""Generate a batch of images via the backend API and download them as a zip.

Usage:
    python generate_batch.py prompts.txt --style Anime --aspect-ratio 1:1
    cat prompts.txt | python generate_batch.py - --retry-failed 2
"""
import argparse
import os
import sys
import time

import requests

API = os.environ.get("BULKGEN_API", "http://localhost:8000/api")


def wait_for_batch(api: str, poll_interval: float = 2.0) -> dict:
    """Poll the task list until nothing is generating."""
    seen = {}
    while True:
        resp = requests.get(f"{api}/tasks", timeout=30)
        resp.raise_for_status()
        board = resp.json()
        for i, task in enumerate(board["tasks"], 1):
            if seen.get(task["id"]) == task["status"]:
                continue
            seen[task["id"]] = task["status"]
            if task["status"] == "done":
                print(f"  ✅ [{i}] {task['prompt']}")
            elif task["status"] == "error":
                print(f"  ❌ [{i}] {task['prompt']}: {task['error']}")
        if not board["is_loading"] and not any(t["status"] == "generating" for t in board["tasks"]):
            return board
        time.sleep(poll_interval)


def run(prompts: str, style: str | None, aspect_ratio: str | None, retries: int,
        output: str, api: str = API, poll_interval: float = 2.0) -> int:
    payload = {"prompts": prompts}
    if style:
        payload["style"] = style
    if aspect_ratio:
        payload["aspect_ratio"] = aspect_ratio

    resp = requests.post(f"{api}/batch", json=payload, timeout=30)
    if not resp.ok:
        print(f"❌ Failed: {resp.status_code} - {resp.text[:200]}")
        return 1
    data = resp.json()
    print(f"🎨 Generating {len(data['tasks'])} images "
          f"({data['options']['style']}, {data['options']['aspect_ratio']})...\n")

    board = wait_for_batch(api, poll_interval)
    for attempt in range(1, retries + 1):
        if not board["has_failed"]:
            break
        print(f"\n🔁 Retrying failed images (round {attempt}/{retries})...")
        resp = requests.post(f"{api}/tasks/regenerate-failed", timeout=30)
        resp.raise_for_status()
        board = wait_for_batch(api, poll_interval)

    if not board["has_done"]:
        print("\n❌ No images were generated.")
        return 1

    resp = requests.get(f"{api}/download", timeout=300)
    resp.raise_for_status()
    with open(output, "wb") as f:
        f.write(resp.content)
    skipped = resp.headers.get("X-Skipped-Images")
    if skipped:
        print(f"\n⚠️  Missing from archive: {skipped}")
    print(f"\n🎉 Done! Saved {output}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate one image per prompt line.")
    parser.add_argument("prompts", help="File with one prompt per line, or - for stdin")
    parser.add_argument("--style", default=None)
    parser.add_argument("--aspect-ratio", default=None)
    parser.add_argument("--retry-failed", type=int, default=0, metavar="N")
    parser.add_argument("--output", default="generated-images.zip")
    parser.add_argument("--api", default=API)
    args = parser.parse_args(argv)

    if args.prompts == "-":
        prompts = sys.stdin.read()
    else:
        with open(args.prompts) as f:
            prompts = f.read()

    try:
        return run(prompts, args.style, args.aspect_ratio, args.retry_failed, args.output, api=args.api)
    except requests.RequestException as e:
        print(f"❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
