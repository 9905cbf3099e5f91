"""
Simple client script to exercise a running try-on proxy.

Usage examples:

Try-on image:
    python exercise_proxy_api.py image \
        --model samples/person.png \
        --item samples/garment.png \
        --prompt "Studio lighting, full body, neutral background" \
        --output result.png

Prompt suggestion:
    python exercise_proxy_api.py suggestion \
        --prompt "Summer dress on a beach"
"""

from __future__ import annotations

import argparse
import base64
import mimetypes
import sys
from pathlib import Path

import requests

BASE_URL = "http://localhost:8000"


def _validate_path(path: Path) -> Path:
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        raise FileNotFoundError(f"File does not exist: {resolved}")
    return resolved


def _inline_image(path: Path) -> dict[str, str]:
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return {
        "mimeType": mime_type,
        "data": base64.b64encode(path.read_bytes()).decode("utf-8"),
    }


def call_generate_image(
    base_url: str,
    model_path: Path,
    item_path: Path,
    prompt: str,
    output_path: Path,
) -> None:
    payload = {
        "fullPrompt": prompt,
        "modelImage": _inline_image(model_path),
        "itemImage": _inline_image(item_path),
    }
    # retries with backoff can take a while on the server side
    response = requests.post(f"{base_url}/api/generate-image", json=payload, timeout=600)

    if response.status_code != 200:
        print("Request failed:", response.status_code, response.text)
        response.raise_for_status()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(base64.b64decode(response.json()["base64Image"]))
    print(f"Saved generated image to {output_path}")


def call_get_suggestion(base_url: str, prompt: str) -> None:
    response = requests.post(f"{base_url}/api/get-suggestion", json={"prompt": prompt}, timeout=120)

    if response.status_code != 200:
        print("Request failed:", response.status_code, response.text)
        response.raise_for_status()

    print(response.json()["text"])


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Exercise the try-on proxy API.")
    parser.add_argument(
        "mode",
        choices=["image", "suggestion"],
        help="Which proxy endpoint to call.",
    )
    parser.add_argument(
        "--base-url",
        default=BASE_URL,
        help="Base URL of the running proxy.",
    )
    parser.add_argument(
        "--model",
        type=Path,
        help="Path to the person (model) image.",
    )
    parser.add_argument(
        "--item",
        type=Path,
        help="Path to the clothing item image.",
    )
    parser.add_argument(
        "--prompt",
        type=str,
        default="",
        help="Prompt text sent with the request.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("tryon_result.png"),
        help="Output file path for the generated image.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    if args.mode == "image":
        if args.model is None or args.item is None:
            print("Image mode needs both --model and --item.", file=sys.stderr)
            sys.exit(1)
        call_generate_image(
            base_url=args.base_url,
            model_path=_validate_path(args.model),
            item_path=_validate_path(args.item),
            prompt=args.prompt,
            output_path=args.output,
        )
    else:
        if not args.prompt:
            print("Suggestion mode needs --prompt.", file=sys.stderr)
            sys.exit(1)
        call_get_suggestion(args.base_url, args.prompt)


if __name__ == "__main__":
    main()
