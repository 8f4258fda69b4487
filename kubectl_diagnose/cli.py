import argparse
import logging
import signal
import sys
import threading

from kubectl_diagnose.config import load_config
from kubectl_diagnose.diagnosis import SubjectRef
from kubectl_diagnose.engine import describe_rules, register_rules
from kubectl_diagnose.errors import DiagnoseError
from kubectl_diagnose.loader import load_plugins
from kubectl_diagnose.orchestrator import RunOptions, run, sweep
from kubectl_diagnose.output import FORMATS, render, render_error, render_rules, render_sweep
from kubectl_diagnose.provider import FileProvider, KubernetesProvider

logger = logging.getLogger(__name__)

EXIT_CODES = {
    "ProviderUnavailable": 3,
    "SubjectNotFound": 4,
    "ProviderTimeout": 5,
    "MalformedSnapshot": 6,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubectl-diagnose",
        description="Diagnose Kubernetes Pod and Service connectivity failures",
    )

    parser.add_argument("subject", nargs="?", help="Pod name (pod mode) or Service name (network mode)")
    parser.add_argument("-n", "--namespace", default="default")
    parser.add_argument(
        "--mode",
        choices=["pod", "network", "sweep"],
        default="pod",
        help="pod: one Pod; network: a Service's path to its Pods; sweep: every Pod in the namespace",
    )
    parser.add_argument("--service", help="pod mode: also check this Service's network path")
    parser.add_argument(
        "-o",
        "--output",
        "--format",
        dest="output",
        choices=FORMATS,
        default="text",
        help="Output format (text, json, yaml)",
    )
    parser.add_argument("--timeout", type=float, help="Seconds allowed per cluster read")

    parser.add_argument(
        "--from-file",
        action="append",
        metavar="PATH",
        help="Read dumped manifests (file or directory) instead of a live cluster; repeatable",
    )
    parser.add_argument("--context", help="kubeconfig context for live reads")
    parser.add_argument("--kubeconfig", help="Path to kubeconfig for live reads")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--plugins", help="Folder with extra rule modules")

    parser.add_argument("--enable-categories", nargs="*", default=None)
    parser.add_argument("--disable-categories", nargs="*", default=None)
    parser.add_argument("--list-rules", action="store_true", help="Print the rule table and exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.plugins:
        try:
            register_rules(load_plugins(args.plugins))
        except ValueError as e:
            parser.error(f"invalid plugin rules: {e}")

    if args.list_rules:
        print(render_rules(describe_rules(), args.output))
        return 0

    if args.mode != "sweep" and not args.subject:
        parser.error("subject is required in pod and network mode")

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        parser.error(f"invalid configuration: {e}")

    config = config.with_overrides(
        timeout_seconds=args.timeout,
        enabled_categories=tuple(args.enable_categories) if args.enable_categories else None,
        disabled_categories=tuple(args.disable_categories) if args.disable_categories else None,
    )

    if args.from_file:
        provider = FileProvider(args.from_file)
    else:
        provider = KubernetesProvider(
            context=args.context,
            kubeconfig=args.kubeconfig,
            request_timeout=config.timeout_seconds,
        )

    if args.mode == "sweep":
        return _run_sweep(args, config, provider)

    subject = SubjectRef(
        kind="service" if args.mode == "network" else "pod",
        namespace=args.namespace,
        name=args.subject,
    )
    options = RunOptions(mode=args.mode, service=args.service, config=config)

    try:
        report = run(subject, options, provider)
    except DiagnoseError as e:
        print(render_error(subject, e, args.output))
        return EXIT_CODES.get(e.kind, 1)

    print(render(report, args.output))
    return 0


def _run_sweep(args, config, provider) -> int:
    cancel = threading.Event()

    def _stop(signum, frame):
        logger.warning("Interrupted; finishing in-flight diagnoses")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _stop)
    try:
        result = sweep(args.namespace, RunOptions(config=config), provider, cancel=cancel)
    except DiagnoseError as e:
        print(render_error(None, e, args.output))
        return EXIT_CODES.get(e.kind, 1)
    finally:
        signal.signal(signal.SIGINT, previous)

    if result.cancelled:
        logger.warning("Sweep cancelled; %d pod(s) not diagnosed", len(result.skipped))
    print(render_sweep(args.namespace, result, args.output))
    return 0


if __name__ == "__main__":
    sys.exit(main())
