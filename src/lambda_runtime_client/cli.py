from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Mapping, NoReturn, Sequence

from .client import RuntimeClient
from .config import API_VERSION_ENV, DEFAULT_API_VERSION, RUNTIME_API_ENV, RuntimeClientConfig
from .context import EventContext
from .exceptions import ConfigurationError, HandlerError, HTTPStatusError, RuntimeApiError

_EXIT_UNRECOVERABLE = 5


def build_parser() -> argparse.ArgumentParser:
    shared = argparse.ArgumentParser(add_help=False)
    _add_global_args(shared, suppress=True)

    parser = argparse.ArgumentParser(
        prog="lambda-runtime-client",
        description="Drive a Lambda Runtime API endpoint by hand",
    )
    _add_global_args(parser)
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    next_parser = subparsers.add_parser("next", help="Poll for the next invocation event", parents=[shared])
    next_parser.set_defaults(handler=_cmd_next)

    respond = subparsers.add_parser("respond", help="Post the response for an invocation", parents=[shared])
    respond.add_argument("request_id", help="Request id returned by `next`")
    respond.add_argument("--data", help="Response body text")
    respond.add_argument("--file", help="Response body file path")
    respond.set_defaults(handler=_cmd_respond)

    error = subparsers.add_parser("error", help="Report a handler error for an invocation", parents=[shared])
    error.add_argument("request_id", help="Request id returned by `next`")
    _add_error_args(error)
    error.set_defaults(handler=_cmd_error)

    init_error = subparsers.add_parser("init-error", help="Report an initialization failure", parents=[shared])
    _add_error_args(init_error)
    init_error.set_defaults(handler=_cmd_init_error)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    output_format = "human"
    try:
        args = parser.parse_args(argv)
        output_format = str(args.output_format)
        _configure_logging(args.log_level)
        handler = getattr(args, "handler", None)
        if handler is None:
            raise ValueError("missing command handler")
        result = handler(args)
        _print_result(result, output_format=output_format)
        return 0
    except SystemExit as exc:
        return _system_exit_code(exc)
    except ConfigurationError as exc:
        return _print_error(str(exc), exit_code=2, output_format=output_format)
    except ValueError as exc:
        return _print_error(str(exc), exit_code=2, output_format=output_format)
    except RuntimeApiError as exc:
        if exc.unrecoverable:
            return _print_error(f"unrecoverable: {exc}", exit_code=_EXIT_UNRECOVERABLE, output_format=output_format)
        if isinstance(exc, HTTPStatusError):
            return _print_error(_format_status_error(exc), exit_code=3, output_format=output_format)
        return _print_error(str(exc), exit_code=4, output_format=output_format)
    except Exception as exc:
        return _print_error(f"{type(exc).__name__}: {exc}", exit_code=1, output_format=output_format)


def _add_global_args(parser: argparse.ArgumentParser, *, suppress: bool = False) -> None:
    # Subcommand copies must not overwrite options given before the subcommand.
    def default(value: Any) -> Any:
        return argparse.SUPPRESS if suppress else value

    parser.add_argument(
        "--format",
        dest="output_format",
        choices=("human", "json"),
        default=default("human"),
        help="Output format. Default: human",
    )
    parser.add_argument("--endpoint", default=default(None), help=f"Runtime API host:port or URL. Default: ${RUNTIME_API_ENV}")
    parser.add_argument("--api-version", default=default(None), help=f"Runtime API version path segment. Default: {DEFAULT_API_VERSION}")
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default=default("WARNING"),
        help="Log level for client diagnostics on stderr. Default: WARNING",
    )


def _add_error_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--message", required=True, help="Error message")
    parser.add_argument("--type", dest="error_type", default="HandlerError", help="Error type tag")
    parser.add_argument("--stack-frame", action="append", dest="stack_trace", help="Stack frame line, repeatable")


def _cmd_next(args: argparse.Namespace) -> Mapping[str, Any]:
    with _build_client(args) as client:
        payload, context = client.poll_next_event()
    view = _context_view(context)
    view["payload"] = _decode_payload(payload)
    return view


def _cmd_respond(args: argparse.Namespace) -> Mapping[str, Any]:
    body = _resolve_body(data=args.data, file_path=args.file)
    with _build_client(args) as client:
        client.post_response(args.request_id, body)
    return {"request_id": args.request_id, "status": "response posted"}


def _cmd_error(args: argparse.Namespace) -> Mapping[str, Any]:
    error = HandlerError(args.message, error_type=args.error_type, stack_trace=args.stack_trace)
    with _build_client(args) as client:
        client.post_error(args.request_id, error)
    return {"request_id": args.request_id, "status": "error posted"}


def _cmd_init_error(args: argparse.Namespace) -> Mapping[str, Any]:
    error = HandlerError(args.message, error_type=args.error_type, stack_trace=args.stack_trace)
    with _build_client(args) as client:
        client.post_init_failure(error)
    return {"status": "init error posted"}


def _build_client(args: argparse.Namespace) -> RuntimeClient:
    return RuntimeClient.from_config(_build_config(args), fatal_handler=_exit_unrecoverable)


def _build_config(args: argparse.Namespace) -> RuntimeClientConfig:
    endpoint = getattr(args, "endpoint", None) or os.getenv(RUNTIME_API_ENV)
    if not endpoint:
        raise ConfigurationError(f"missing runtime api endpoint: set {RUNTIME_API_ENV} or pass --endpoint")
    api_version = getattr(args, "api_version", None) or os.getenv(API_VERSION_ENV) or DEFAULT_API_VERSION
    return RuntimeClientConfig(endpoint=endpoint, api_version=api_version)


def _exit_unrecoverable(message: str) -> NoReturn:
    print(f"Fatal: {message}", file=sys.stderr)
    raise SystemExit(_EXIT_UNRECOVERABLE)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _context_view(context: EventContext) -> dict[str, Any]:
    view: dict[str, Any] = {
        "request_id": context.request_id,
        "function_arn": context.function_arn,
        "trace_id": context.trace_id,
        "deadline_ms": context.deadline_ms,
    }
    if context.client_context is not None:
        view["client_context"] = context.client_context.to_dict()
    if context.identity is not None:
        view["identity"] = context.identity.to_dict()
    return view


def _decode_payload(payload: bytes) -> Any:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return payload.hex()
    try:
        return json.loads(text)
    except ValueError:
        return text


def _resolve_body(*, data: str | None, file_path: str | None) -> bytes:
    if (data is None) == (file_path is None):
        raise ValueError("exactly one of --data or --file is required")
    if data is not None:
        return data.encode("utf-8")
    return Path(str(file_path)).read_bytes()


def _print_result(result: Any, *, output_format: str) -> None:
    if output_format == "json":
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return
    if not result:
        print("OK")
        return
    if isinstance(result, Mapping):
        width = max(len(str(key)) for key in result)
        for key in sorted(result):
            value = result[key]
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)
            print(f"{key:<{width}} : {value}")
        return
    print(result)


def _print_error(message: str, *, exit_code: int, output_format: str) -> int:
    if output_format == "json":
        print(
            json.dumps(
                {
                    "ok": False,
                    "error": message,
                    "exit_code": exit_code,
                },
                ensure_ascii=False,
            )
        )
    else:
        print(f"Error: {message}", file=sys.stderr)
    return exit_code


def _format_status_error(exc: HTTPStatusError) -> str:
    parts = [str(exc), f"status_code={exc.status_code}"]
    if exc.response_text:
        parts.append(f"response={exc.response_text[:500]}")
    return "; ".join(parts)


def _system_exit_code(exc: SystemExit) -> int:
    code = exc.code
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
