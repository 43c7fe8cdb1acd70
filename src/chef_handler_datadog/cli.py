from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .config import HandlerConfig, dump_config, load_cli_config
from .handler import DatadogHandler
from .logging import LogConfig, get_logger, setup_logging
from .model import RunStatus
from .util.errors import ConfigError, as_exit_code

LOG = get_logger(__name__)


def _load_run_status(path: Path) -> RunStatus:
    if not path.exists():
        raise ConfigError(f"Run status file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse run status file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level run status must be an object")
    return RunStatus.from_dict(data)


def cmd_report(args: argparse.Namespace, cfg: HandlerConfig) -> int:
    run_status = _load_run_status(Path(args.run_status))
    handler = DatadogHandler(cfg)
    try:
        summary = handler.report(run_status)
    finally:
        handler.close()
    if summary is None:
        print("WARN: report could not be assembled; see logs")
        return 0
    delivered = sum(1 for d in summary.deliveries if d.metrics and d.event and d.tags and d.error is None)
    LOG.info(
        "Report complete",
        extra={"host": summary.hostname, "endpoints": len(summary.deliveries), "delivered": delivered},
    )
    print(f"OK: reported {summary.event.title.strip()} to {delivered}/{len(summary.deliveries)} endpoint(s)")
    return 0


def cmd_validate_config(args: argparse.Namespace, cfg: HandlerConfig) -> int:
    handler = DatadogHandler(cfg)
    try:
        LOG.debug("Resolved handler config", extra={"config": json.dumps(dump_config(cfg), sort_keys=True)})
        # Print endpoints only; credentials never reach stdout
        for endpoint in handler.endpoints:
            print(endpoint.url)
    finally:
        handler.close()
    return 0


def main() -> None:
    try:
        command, args, cfg = load_cli_config()
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "report":
            code = cmd_report(args, cfg)
        elif command == "validate-config":
            code = cmd_validate_config(args, cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except Exception as e:
        # Map to consistent exit code and log
        setup_logging(LogConfig())
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
