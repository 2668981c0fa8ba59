"""CLI entry point for provider-bridge.

Exercises the built-in descriptors from a terminal: list providers, list a
provider's models, stream a chat completion, or transcribe an audio file.

Entry point:
    provider-bridge providers [--kind chat|stt] [--json]
    provider-bridge models --provider <id> [--retries N] [--json]
    provider-bridge chat --provider <id> [--model M] [--image FILE] "prompt"
    provider-bridge transcribe --provider <id> [--model M] <audio-file>
"""

import argparse
import asyncio
import base64
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar, Union

from dotenv import load_dotenv
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from provider_bridge import state
from provider_bridge.adapters import ChatTask, DescriptorAdapter, SpeechTask
from provider_bridge.config import (
    get_api_key_from_env,
    get_retry_max_wait,
    get_retry_min_wait,
)
from provider_bridge.descriptors import ProviderKind
from provider_bridge.errors import ProviderError, is_retryable
from provider_bridge.registry import ProviderRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provider-bridge",
        description="Call chat and speech-to-text vendors through declarative descriptors.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command")

    def provider_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--provider", required=True, help="Provider id (see `providers`)")
        p.add_argument("--api-key", default=None, help="API key (default: <ID>_API_KEY or PROVIDER_BRIDGE_API_KEY)")
        p.add_argument("--retries", type=int, default=1, help="Attempts for transient failures")

    # providers
    providers_p = sub.add_parser("providers", help="List built-in providers")
    providers_p.add_argument("--kind", choices=[k.value for k in ProviderKind], default=None)
    providers_p.add_argument("--json", action="store_true", dest="json_output", help="JSON output")

    # models
    models_p = sub.add_parser("models", help="List a provider's models")
    provider_args(models_p)
    models_p.add_argument("--json", action="store_true", dest="json_output", help="JSON output")

    # chat
    chat_p = sub.add_parser("chat", help="Stream a chat completion")
    provider_args(chat_p)
    chat_p.add_argument("prompt", help="User message")
    chat_p.add_argument("--model", default=None, help="Model id (default: provider default)")
    chat_p.add_argument("--system", default=None, help="System prompt")
    chat_p.add_argument("--image", default=None, help="Image file to attach")
    chat_p.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")
    chat_p.add_argument("--warm", action="store_true", help="Pre-open the provider connection first")
    chat_p.add_argument("--voice", action="store_true", help="Short, low-temperature reply for speech output")

    # transcribe
    stt_p = sub.add_parser("transcribe", help="Transcribe an audio file")
    provider_args(stt_p)
    stt_p.add_argument("audio", help="Audio file")
    stt_p.add_argument("--model", default=None, help="Model id (default: provider default)")
    stt_p.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")

    return parser


# ─────────────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────────────


async def _with_retries(
    call: Callable[[], Awaitable[Union[T, ProviderError]]], attempts: int
) -> Union[T, ProviderError]:
    """Retry a value-returning call while it hands back a transient failure."""

    @retry(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=1, min=get_retry_min_wait(), max=get_retry_max_wait()),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def attempt() -> T:
        result = await call()
        if isinstance(result, ProviderError):
            raise result
        return result

    try:
        return await attempt()
    except ProviderError as e:
        return e


def _image_data_url(path: str) -> str:
    mime = mimetypes.guess_type(path)[0] or "image/jpeg"
    data = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return f"data:{mime};base64,{data}"


def _adapter(
    registry: ProviderRegistry, provider_id: str, kind: Optional[ProviderKind],
    api_key: Optional[str], model: Optional[str] = None,
) -> DescriptorAdapter:
    descriptor = registry.require(provider_id, kind)
    key = api_key or get_api_key_from_env(descriptor.id) or ""
    return DescriptorAdapter(descriptor, api_key=key, model=model)


def _fail(error: ProviderError) -> int:
    print(f"Error: {error.describe()}", file=sys.stderr)
    return 1


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


def _cmd_providers(registry: ProviderRegistry, kind: Optional[str], json_output: bool) -> int:
    descriptors = registry.by_kind(ProviderKind(kind)) if kind else list(registry)
    if json_output:
        json.dump([
            {"id": d.id, "name": d.name, "kind": d.kind.value, "default_model": d.default_model}
            for d in descriptors
        ], sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        for d in descriptors:
            print(f"{d.id:<20} {d.kind.value:<5} {d.name}")
    return 0


async def _cmd_models(
    registry: ProviderRegistry, provider_id: str, api_key: Optional[str],
    retries: int, json_output: bool,
) -> int:
    adapter = _adapter(registry, provider_id, None, api_key)
    result = await _with_retries(adapter.get_available_models, retries)
    if isinstance(result, ProviderError):
        return _fail(result)

    if json_output:
        json.dump({"provider": provider_id, "models": result}, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        for model_id in result:
            print(model_id)
    return 0


async def _cmd_chat(
    registry: ProviderRegistry, provider_id: str, api_key: Optional[str], prompt: str,
    model: Optional[str] = None, system: Optional[str] = None,
    image: Optional[str] = None, timeout: Optional[float] = None,
    warm: bool = False, voice: bool = False,
) -> int:
    adapter = _adapter(registry, provider_id, ProviderKind.CHAT, api_key, model)
    if warm:
        await state.get_client_pool().warm(adapter.descriptor.base_url)
    task = ChatTask(
        user_text=prompt,
        system_prompt=system,
        image=_image_data_url(image) if image else None,
        timeout_seconds=timeout,
        voice=voice,
    )
    async for item in adapter.stream_completion(task):
        if isinstance(item, ProviderError):
            sys.stdout.write("\n")
            return _fail(item)
        sys.stdout.write(item)
        sys.stdout.flush()
    sys.stdout.write("\n")
    if adapter.last_stats is not None and adapter.last_stats.dropped_frames:
        print(f"Warning: {adapter.last_stats.dropped_frames} malformed frame(s) dropped", file=sys.stderr)
    return 0


async def _cmd_transcribe(
    registry: ProviderRegistry, provider_id: str, api_key: Optional[str], audio_path: str,
    retries: int = 1, model: Optional[str] = None, timeout: Optional[float] = None,
) -> int:
    path = Path(audio_path)
    if not path.exists():
        print(f"Error: audio file not found: {audio_path}", file=sys.stderr)
        return 1
    adapter = _adapter(registry, provider_id, ProviderKind.STT, api_key, model)
    task = SpeechTask(audio=path.read_bytes(), timeout_seconds=timeout)
    result = await _with_retries(lambda: adapter.transcribe(task), retries)
    if isinstance(result, ProviderError):
        return _fail(result)
    print(result)
    return 0


async def _run(args: argparse.Namespace, registry: ProviderRegistry) -> int:
    try:
        if args.command == "models":
            return await _cmd_models(registry, args.provider, args.api_key, args.retries, args.json_output)
        elif args.command == "chat":
            return await _cmd_chat(
                registry, args.provider, args.api_key, args.prompt,
                model=args.model, system=args.system, image=args.image,
                timeout=args.timeout, warm=args.warm, voice=args.voice,
            )
        elif args.command == "transcribe":
            return await _cmd_transcribe(
                registry, args.provider, args.api_key, args.audio,
                retries=args.retries, model=args.model, timeout=args.timeout,
            )
        return 1
    except ProviderError as e:
        return _fail(e)
    finally:
        await state.aclose_pool()


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


def main(argv: Optional[list[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    # Load env
    load_dotenv()

    registry = ProviderRegistry.builtin()

    # Dispatch
    if args.command == "providers":
        code = _cmd_providers(registry, args.kind, args.json_output)
    elif args.command in ("models", "chat", "transcribe"):
        code = asyncio.run(_run(args, registry))
    else:
        parser.print_help()
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
