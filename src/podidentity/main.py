"""Main entry point for the pod identity association reconciler.

Runs one reconciliation pass: loads the declared associations, reconciles
them against EKS and CloudFormation, and writes the resulting
serviceAccount/roleArn pairs as JSON for the addon configuration step.

Exit codes:
    0: all associations reconciled
    1: configuration, associations file or reconciliation failure
    2: credential policy violation
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import Config, ConfigurationError
from .errors import ReconciliationError
from .lookup import EKSAssociationLookup
from .models import AddonSpec
from .orchestrator import ReconciliationOrchestrator
from .provisioner import CloudFormationRoleCreator, CloudFormationRoleUpdater
from .reconciler import AddonPodIdentityAssociation, AssociationReconciler
from .security import StaticCredentialsError, create_clients, create_session
from .spec_loader import SpecLoadError, load_addon_spec
from .stacks import CloudFormationOwnershipProbe

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = True, level: int = logging.INFO) -> None:
    """Configure logging: JSON to stdout for production, plain text otherwise."""
    handler = logging.StreamHandler(sys.stderr if not json_output else sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def executor_workers(config: Config, requirement_count: int) -> int:
    """Threads needed so no in-flight requirement queues for a worker.

    Each requirement issues its AWS calls one at a time, so one thread per
    requirement the orchestrator may run at once is enough.
    """
    if config.max_concurrent_reconciles:
        return max(1, min(config.max_concurrent_reconciles, requirement_count))
    return max(1, requirement_count)


def build_orchestrator(
    config: Config, session: Any, executor: Executor | None = None
) -> ReconciliationOrchestrator:
    """Wire the boto3 adapters into a ReconciliationOrchestrator."""
    eks_client, cfn_client = create_clients(session, config)

    reconciler = AssociationReconciler(
        cluster_name=config.cluster_name,
        lookup=EKSAssociationLookup(eks_client, config.api_timeout_seconds, executor),
        probe=CloudFormationOwnershipProbe(cfn_client, config.api_timeout_seconds, executor),
        creator=CloudFormationRoleCreator(
            cfn_client,
            cluster_name=config.cluster_name,
            region=config.region,
            api_timeout_seconds=config.api_timeout_seconds,
            stack_timeout_seconds=config.stack_timeout_seconds,
            executor=executor,
        ),
        updater=CloudFormationRoleUpdater(
            cfn_client,
            cluster_name=config.cluster_name,
            region=config.region,
            api_timeout_seconds=config.api_timeout_seconds,
            stack_timeout_seconds=config.stack_timeout_seconds,
            executor=executor,
        ),
        addon_name=config.addon_name,
    )
    return ReconciliationOrchestrator(reconciler, max_concurrency=config.max_concurrent_reconciles)


async def run_reconciliation(
    config: Config,
    *,
    session: Any | None = None,
    spec: AddonSpec | None = None,
    cancel_event: asyncio.Event | None = None,
) -> list[AddonPodIdentityAssociation]:
    """Run one reconciliation pass.

    Args:
        config: Validated configuration.
        session: boto3 session; created from config when omitted.
        spec: Requirements; loaded from config.associations_file when omitted.
        cancel_event: Stops dispatching new requirements once set.

    Returns:
        Reconciled associations in declaration order.

    Raises:
        SpecLoadError: If the associations file is invalid.
        StaticCredentialsError: If the credential policy is violated.
        ReconciliationError: If any association fails.
    """
    if spec is None:
        spec = load_addon_spec(config.associations_file, config.addon_name or None)
    if session is None:
        session = create_session(
            config.region,
            require_role_credentials=config.security.require_role_credentials,
        )

    associations = spec.pod_identity_associations
    executor = ThreadPoolExecutor(
        max_workers=executor_workers(config, len(associations)),
        thread_name_prefix="podid-aws",
    )
    try:
        orchestrator = build_orchestrator(config, session, executor)
        return await orchestrator.reconcile(
            associations,
            cancel_event=cancel_event,
            timeout_seconds=config.reconcile_timeout_seconds,
        )
    finally:
        # Calls abandoned by a timeout keep their thread; do not block the loop on them
        executor.shutdown(wait=False, cancel_futures=True)


def render_results(results: list[AddonPodIdentityAssociation]) -> str:
    """Serialize results in the EKS addon podIdentityAssociations shape."""
    return json.dumps({"podIdentityAssociations": [r.to_api() for r in results]}, indent=2)


def write_results(results: list[AddonPodIdentityAssociation], output_file: Path | None) -> None:
    payload = render_results(results)
    if output_file is None:
        sys.stdout.write(payload + "\n")
        return
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(payload + "\n", encoding="utf-8")


async def main() -> int:
    """Run the reconciler once.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(json_output=config.security.enable_audit_logging)
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting pod identity association reconciler",
        extra={
            "cluster": config.cluster_name,
            "region": config.region,
            "addon": config.addon_name,
            "associations_file": str(config.associations_file),
        },
    )

    # Set up signal handlers for graceful shutdown
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal, cancelling", extra={"signal": sig.name})
        cancel_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        results = await run_reconciliation(config, cancel_event=cancel_event)
        write_results(results, config.output_file)

    except SpecLoadError as e:
        logger.error(
            "Associations file loading failed",
            extra={"error": str(e), "associations_file": str(config.associations_file)},
        )
        return 1

    except StaticCredentialsError as e:
        # SECURITY: Long-lived keys detected - fatal policy error
        logger.critical("Credential policy violation", extra={"error": str(e)})
        return 2

    except ReconciliationError as e:
        logger.error(
            "Reconciliation failed",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Reconciler finished", extra={"associations": len(results)})
    return 0


def run() -> None:
    """Entry point for the reconciler."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
