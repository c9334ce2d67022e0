from __future__ import annotations

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

import typer
import yaml

from src.common.errors import ApplyError, ConfigurationError
from src.gateway.base import ClusterGateway, GatewayError
from src.model.descriptor import SessionContext

from .config import load_policy
from .engine import ApplyEngine

app = typer.Typer(help="Apply Kubernetes/OpenShift manifests and reconcile them against a live cluster.")


def _collect_from_inputs(paths: Iterable[Path]) -> List[Path]:
    files: List[Path] = []
    seen = set()
    for path in paths:
        resolved = path.expanduser().resolve()
        if resolved.is_dir():
            candidates = sorted(list(resolved.glob("*.yml")) + list(resolved.glob("*.yaml")) + list(resolved.glob("*.json")))
        elif resolved.exists():
            candidates = [resolved]
        else:
            raise typer.BadParameter(f"Manifest path not found: {path}")
        for candidate in candidates:
            if candidate in seen:
                continue
            seen.add(candidate)
            files.append(candidate)
    return files


def _load_documents(path: Path) -> List[Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return [doc for doc in yaml.safe_load_all(handle) if doc is not None]
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"Failed to parse {path}: {exc}") from exc


def _build_gateway(context: Optional[str], field_manager: str) -> ClusterGateway:
    from src.gateway.kube import KubeGateway

    return KubeGateway.from_config(context, field_manager=field_manager)


@app.command()
def apply(
    inputs: List[Path] = typer.Option(
        ...,
        "--in",
        "-i",
        help="Manifest file(s) or directories of YAML/JSON manifests to apply.",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML file with apply options (camelCase or snake_case).",
    ),
    namespace: Optional[str] = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Default namespace for resources that do not declare one.",
    ),
    context: Optional[str] = typer.Option(
        None,
        "--context",
        help="Kubeconfig context to use (defaults to in-cluster config, then the current context).",
    ),
    recreate: Optional[bool] = typer.Option(
        None,
        "--recreate/--no-recreate",
        help="Delete and recreate changed resources instead of patching them.",
    ),
    log_json_dir: Optional[Path] = typer.Option(
        None,
        "--log-json-dir",
        help="Directory where every create/update response is archived as JSON.",
    ),
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Where to write the apply outcomes as JSON.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s: %(message)s")

    try:
        policy = load_policy(config).with_overrides(
            namespace=namespace,
            recreate_mode=recreate,
            log_json_dir=log_json_dir,
        )
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    manifests = _collect_from_inputs(inputs)
    if not manifests:
        raise typer.BadParameter("No manifest files found to apply.")
    batches: List[Tuple[Path, List[Any]]] = [(path, _load_documents(path)) for path in manifests]

    try:
        gateway = _build_gateway(context, policy.field_manager)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except GatewayError as exc:
        typer.echo(f"Unable to reach the cluster: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    engine = ApplyEngine(gateway, policy)
    session = SessionContext()
    outcomes = []
    try:
        for path, documents in batches:
            outcomes.extend(engine.apply(documents, path.name, session))
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except ApplyError as exc:
        outcomes.extend(exc.outcomes)
        _write_outcomes(out, outcomes)
        typer.echo(f"Apply failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    _write_outcomes(out, outcomes)
    counts = Counter(outcome.action.value for outcome in outcomes)
    summary = ", ".join(f"{action}={count}" for action, count in sorted(counts.items())) or "nothing to apply"
    typer.echo(f"Applied {len(outcomes)} resource(s) from {len(batches)} file(s): {summary}")


def _write_outcomes(out: Optional[Path], outcomes: List[Any]) -> None:
    if out is None:
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps([outcome.to_dict() for outcome in outcomes], indent=2), encoding="utf-8")


if __name__ == "__main__":  # pragma: no cover
    app()
