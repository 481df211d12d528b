from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import typer

from reves.cargo import CargoArgs, ColorChoice
from reves.config import (
    TomlTable,
    config_bool,
    config_list,
    config_path,
    lint_defaults,
    merge_payload,
)
from reves.exceptions import RevesError
from reves.fix import apply_fixes
from reves.lint import LintOptions, lint_dependencies
from reves.model import DependencyLintResults

app = typer.Typer(add_completion=False)

LintRunner = Callable[[Path, LintOptions], DependencyLintResults]

_ERROR_EXIT = 2
_FINDINGS_EXIT = 1


@app.callback()
def main() -> None:
    """Find unused dependencies and orphaned artifacts in a cargo workspace."""


def _context_lint_runner(ctx: typer.Context) -> LintRunner:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("lint_dependencies")
        if callable(candidate):
            return candidate
    return lint_dependencies


def _settings(
    *,
    root: Path,
    config_file: Optional[Path],
    payload: TomlTable,
) -> TomlTable:
    return merge_payload(payload, lint_defaults(root=root, config_path=config_file))


def _lint_options(
    settings: TomlTable,
    *,
    color: ColorChoice,
    manifest_path: Optional[Path],
) -> LintOptions:
    return LintOptions(
        cargo_args=CargoArgs(
            color=color,
            frozen=config_bool(settings, "frozen"),
            locked=config_bool(settings, "locked"),
            offline=config_bool(settings, "offline"),
            workspace=config_bool(settings, "workspace"),
            config=tuple(config_list(settings, "cargo_config")),
            target_dir=config_path(settings, "target_dir"),
            manifest_path=manifest_path,
        ),
        check_doc_tests=config_bool(settings, "check_doc_tests", default=True),
    )


def _echo_results(results: DependencyLintResults, *, show_orphans: bool) -> None:
    for unused in results.sorted_unused_dependencies():
        typer.echo(
            f"{unused.dependant}: {unused.kind.value} dependency "
            f"`{unused.declared_name}` ({unused.dependency}) is unused"
        )
    typer.echo(f"Found #{len(results.unused_dependencies)} unused dependencies")
    if not show_orphans:
        return
    for orphan in results.sorted_orphans():
        typer.echo(
            f"{orphan.package}: {orphan.kind.value} `{orphan.name}` "
            f"({orphan.package_relative_path}) does not use its package's library"
        )
    typer.echo(f"Found #{len(results.orphans)} orphan artifacts")


def _write_report(path: Path, results: DependencyLintResults) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(results.to_payload(), indent=2, sort_keys=False) + "\n",
        encoding="utf-8",
    )


@app.command("lint")
def lint(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    config_file: Optional[Path] = typer.Option(None, "--config-file"),
    color: ColorChoice = typer.Option(ColorChoice.AUTO, "--color"),
    frozen: Optional[bool] = typer.Option(None, "--frozen/--no-frozen"),
    locked: Optional[bool] = typer.Option(None, "--locked/--no-locked"),
    offline: Optional[bool] = typer.Option(None, "--offline/--no-offline"),
    workspace: Optional[bool] = typer.Option(None, "--workspace/--no-workspace"),
    cargo_config: Optional[List[str]] = typer.Option(None, "--config"),
    target_dir: Optional[Path] = typer.Option(None, "--target-dir"),
    manifest_path: Optional[Path] = typer.Option(None, "--manifest-path"),
    check_doc_tests: Optional[bool] = typer.Option(
        None,
        "--check-doc-tests/--no-check-doc-tests",
        help="Requires a nightly rustdoc; without it dev-dependencies used only "
        "by doc tests are reported as unused.",
    ),
    allow_orphaned_artifacts: Optional[bool] = typer.Option(
        None, "--allow-orphaned-artifacts/--no-allow-orphaned-artifacts"
    ),
    fix: bool = typer.Option(
        False,
        "--fix",
        help="Remove unused dependencies from Cargo.toml files (experimental).",
    ),
    fail_on_findings: Optional[bool] = typer.Option(
        None, "--fail-on-findings/--no-fail-on-findings"
    ),
    report_json: Optional[Path] = typer.Option(None, "--report-json"),
) -> None:
    """Report unused dependencies and orphaned artifacts."""
    settings = _settings(
        root=root,
        config_file=config_file,
        payload={
            "frozen": frozen,
            "locked": locked,
            "offline": offline,
            "workspace": workspace,
            "cargo_config": list(cargo_config) if cargo_config else None,
            "target_dir": str(target_dir) if target_dir is not None else None,
            "check_doc_tests": check_doc_tests,
            "allow_orphaned_artifacts": allow_orphaned_artifacts,
            "fail_on_findings": fail_on_findings,
        },
    )
    options = _lint_options(settings, color=color, manifest_path=manifest_path)
    runner = _context_lint_runner(ctx)
    try:
        results = runner(root, options)
    except RevesError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=_ERROR_EXIT) from exc

    show_orphans = not config_bool(settings, "allow_orphaned_artifacts")
    _echo_results(results, show_orphans=show_orphans)
    if report_json is not None:
        _write_report(report_json, results)
        typer.echo(f"Wrote report JSON: {report_json}")

    if fix:
        try:
            outcomes = apply_fixes(results.unused_dependencies)
        except RevesError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            raise typer.Exit(code=_ERROR_EXIT) from exc
        fixed = sum(1 for outcome in outcomes if outcome.removals > 0)
        typer.echo(f"Removed #{fixed} unused dependencies")

    findings = len(results.unused_dependencies) + (
        len(results.orphans) if show_orphans else 0
    )
    if findings and config_bool(settings, "fail_on_findings"):
        raise typer.Exit(code=_FINDINGS_EXIT)
