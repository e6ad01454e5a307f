"""
Command-Line Interface for tts-gateway.

Runs the HTTP server, or drives the same GatewayService directly for
one-off synthesis without a server.

Usage Examples:
    # Run the HTTP server on server.bind
    tts-gateway serve

    # One-off synthesis
    tts-gateway synth --text "Hello world" --voice en --mode gTTS --out hello.mp3

    # Validate and fingerprint only (no backend call)
    tts-gateway synth --text "Test" --voice en1 --mode eSpeak --dry-run --json

    # Catalog
    tts-gateway modes
    tts-gateway voices --mode Polly --raw

Environment Variables:
    TTS_GW_SETTINGS: Settings file (default config/settings.yaml)
    TTS_GW_*: Per-value overrides, see core/config.py
"""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from tts_gateway.core.config import Settings, apply_env_overrides, load_settings
from tts_gateway.core.logging import configure_logging, get_logger, info, set_request_id
from tts_gateway.services.errors import GatewayError
from tts_gateway.services.gateway_service import GatewayService, TTSParams

_LOG = get_logger("tts-gateway.cli")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tts-gateway", description="tts-gateway CLI")
    parser.add_argument("--settings", default=os.getenv("TTS_GW_SETTINGS", "config/settings.yaml"),
                        help="Settings YAML path")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--bind", help="host:port override for server.bind")

    synth = sub.add_parser("synth", help="Synthesize one text")
    synth.add_argument("--text", required=True, help="Text to synthesize")
    synth.add_argument("--voice", required=True, help="Voice id")
    synth.add_argument("--mode", required=True, help="Mode id")
    synth.add_argument("--rate", type=float, default=1.0, help="Speaking rate multiplier")
    synth.add_argument("--format", dest="audio_format", help="Preferred output format")
    synth.add_argument("--translate", dest="translation_lang", help="DeepL target language")
    synth.add_argument("--out", help="Output file (default out.<ext>)")
    synth.add_argument("--dry-run", action="store_true",
                       help="Validate and fingerprint without synthesis")
    synth.add_argument("--json", action="store_true", help="Print JSON output")

    sub.add_parser("modes", help="List enabled modes")

    voices = sub.add_parser("voices", help="List voices for a mode")
    voices.add_argument("--mode", required=True, help="Mode id")
    voices.add_argument("--raw", action="store_true", help="Print the provider's native listing")

    return parser.parse_args(argv)


def _load(path: str) -> Settings:
    """Settings from path; built-in defaults if the default file is absent."""
    try:
        return load_settings(path)
    except FileNotFoundError:
        if path != "config/settings.yaml":
            raise
        return Settings(raw=apply_env_overrides({}))


def _build_service(settings: Settings) -> GatewayService:
    return GatewayService(settings.get_gateway_config())


def _serve(settings: Settings, bind: Optional[str]) -> int:
    import uvicorn

    config = settings.get_gateway_config()
    if bind:
        host, _, port = bind.rpartition(":")
        host, port = host.strip("[]") or "0.0.0.0", int(port)
    else:
        host, port = config.server.host, config.server.port

    info(_LOG, "serve", host=host, port=port)
    uvicorn.run("tts_gateway.main:app", host=host, port=port)
    return 0


def _synth(service: GatewayService, args: argparse.Namespace) -> int:
    params = TTSParams(
        text=args.text,
        lang=args.voice,
        mode=args.mode,
        speaking_rate=args.rate,
        preferred_format=args.audio_format,
        translation_lang=args.translation_lang,
    )

    if args.dry_run:
        summary = service.dry_run(params, authorization=service.config.auth.key)
        payload = {"ok": True, "dry_run": True, **summary}
        if args.json:
            print(json.dumps(payload, ensure_ascii=False))
        else:
            info(_LOG, "dry_run", mode=summary["mode"], fingerprint=summary["fingerprint"])
            print(payload)
        return 0

    rid = str(uuid4())[:12]
    set_request_id(rid)
    outcome = service.handle(params, authorization=service.config.auth.key, request_id=rid)

    out_path = Path(args.out or f"out.{outcome.audio_format.value}")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(outcome.audio)

    payload = {
        "ok": True,
        "dry_run": False,
        "out": str(out_path),
        "bytes": len(outcome.audio),
        "format": outcome.audio_format.value,
        "cache": outcome.cache_status,
    }
    if args.json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code: 0 on success, 1 on a gateway error (the {code, display}
        body is printed), 2 on bad arguments (argparse).
    """
    args = _parse_args(argv)
    configure_logging()

    settings = _load(args.settings)

    if args.command == "serve":
        os.environ.setdefault("TTS_GW_SETTINGS", args.settings)
        return _serve(settings, args.bind)

    service = _build_service(settings)
    try:
        if args.command == "modes":
            for mode in service.list_modes():
                print(mode)
            return 0

        if args.command == "voices":
            listing = service.list_voices(args.mode, raw=args.raw)
            if args.raw:
                print(json.dumps(listing, ensure_ascii=False, indent=2, default=str))
            else:
                for voice in listing:
                    print(voice)
            return 0

        return _synth(service, args)
    except GatewayError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False))
        return 1
    finally:
        service.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
