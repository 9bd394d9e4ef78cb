"""Typer CLI entrypoint for docmatch."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal, cast

import typer

from apps.cli.format_human import (
    render_batch,
    render_extraction,
    render_fingerprint,
    render_matches,
    render_resolution,
    render_validation,
)
from apps.cli.io import dump_payload, load_document_input, write_json_atomic
from core.config.loader import load_settings
from core.config.models import MatchingSettings
from core.extraction.content import DocumentInput, DocumentSource, InMemoryDocumentContent
from core.extraction.engine import ExtractionEngine
from core.matching.batch import BatchCoordinator
from core.matching.service import TemplateMatchingService
from core.templates.bundle_store import load_template_bundle
from core.templates.models import EffectiveTemplate
from core.templates.resolver import InheritanceResolver
from core.templates.store import InMemoryTemplateStore
from core.templates.validation import validate_active_set, validate_template
from core.utils.errors import (
    CycleDetectedError,
    DocmatchError,
    InvalidPatternError,
    MissingAncestorError,
    TemplateNotFoundError,
)

app = typer.Typer(help="Document template matching and extraction CLI", rich_markup_mode=None)
OutputMode = Literal["human", "json"]

EXIT_INVALID_INPUT = 1
EXIT_STRUCTURAL = 2

BundleOption = Annotated[Path, typer.Option("--bundle", help="Template bundle JSON file.")]
DocumentOption = Annotated[Path, typer.Option("--document", help="Document JSON payload.")]
SettingsOption = Annotated[
    Path | None, typer.Option("--settings", help="Matching settings YAML (default: bundled).")
]
OutputOption = Annotated[str, typer.Option("--output", help="human or json.")]
OutOption = Annotated[
    Path | None, typer.Option("--out", help="Also write the JSON result to this path.")
]


@app.callback()
def cli_callback() -> None:
    """CLI root callback so every operation is an explicit subcommand."""


@app.command("resolve")
def resolve_command(
    bundle: BundleOption,
    template_id: Annotated[str, typer.Option("--template-id")],
    output: OutputOption = "human",
    out: OutOption = None,
) -> None:
    """Flatten a template's inheritance chain into its effective template."""

    output_mode = _output_mode(output)
    store = _load_store(bundle)
    effective = _resolve_or_exit(InheritanceResolver(store), template_id)
    _emit(effective.model_dump(mode="json"), render_resolution(effective), output_mode, out)


@app.command("fingerprint")
def fingerprint_command(
    document: DocumentOption,
    settings: SettingsOption = None,
    output: OutputOption = "human",
    out: OutOption = None,
) -> None:
    """Compute a document fingerprint."""

    output_mode = _output_mode(output)
    source = _load_source(document)
    service = TemplateMatchingService(_load_settings(settings))
    fingerprint = service.fingerprint_document(source)
    _emit(
        {"document_id": source.document_id, "fingerprint": fingerprint.model_dump(mode="json")},
        render_fingerprint(source.document_id, fingerprint),
        output_mode,
        out,
    )


@app.command("match")
def match_command(
    bundle: BundleOption,
    document: DocumentOption,
    template_id: Annotated[
        list[str] | None,
        typer.Option("--template-id", help="Restrict candidates; repeat for several."),
    ] = None,
    settings: SettingsOption = None,
    min_confidence: Annotated[float | None, typer.Option("--min-confidence")] = None,
    max_results: Annotated[int | None, typer.Option("--max-results")] = None,
    output: OutputOption = "human",
    out: OutOption = None,
) -> None:
    """Rank the bundle's active templates against one document."""

    output_mode = _output_mode(output)
    _check_min_confidence(min_confidence)
    if max_results is not None and max_results < 1:
        typer.echo("ERROR: --max-results must be at least 1.")
        raise typer.Exit(code=EXIT_INVALID_INPUT)

    store = _load_store(bundle)
    source = _load_source(document)
    service = TemplateMatchingService(_load_settings(settings))
    candidates = _candidate_templates(store, template_id)

    matches = service.get_all_matches(
        source,
        candidates,
        minimum_confidence=min_confidence,
        max_results=max_results,
    )
    _emit(
        {
            "document_id": source.document_id,
            "matches": [match.model_dump(mode="json") for match in matches],
        },
        render_matches(source.document_id, matches),
        output_mode,
        out,
    )


@app.command("extract")
def extract_command(
    bundle: BundleOption,
    template_id: Annotated[str, typer.Option("--template-id")],
    document: DocumentOption,
    output: OutputOption = "human",
    out: OutOption = None,
) -> None:
    """Extract field values from one document with one template."""

    output_mode = _output_mode(output)
    store = _load_store(bundle)
    effective = _resolve_or_exit(InheritanceResolver(store), template_id)
    payload = _load_document(document)

    try:
        result = ExtractionEngine().extract(effective, InMemoryDocumentContent.from_input(payload))
    except InvalidPatternError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_STRUCTURAL) from exc

    _emit(
        {"document_id": payload.document_id, "extraction": result.model_dump(mode="json")},
        render_extraction(result),
        output_mode,
        out,
    )


@app.command("batch")
def batch_command(
    bundle: BundleOption,
    document: Annotated[
        list[Path], typer.Option("--document", help="Document JSON payload; repeat for several.")
    ],
    settings: SettingsOption = None,
    min_confidence: Annotated[float | None, typer.Option("--min-confidence")] = None,
    max_concurrent: Annotated[int | None, typer.Option("--max-concurrent")] = None,
    output: OutputOption = "human",
    out: OutOption = None,
) -> None:
    """Find the best template for each of several documents concurrently."""

    output_mode = _output_mode(output)
    _check_min_confidence(min_confidence)
    if max_concurrent is not None and max_concurrent < 1:
        typer.echo("ERROR: --max-concurrent must be at least 1.")
        raise typer.Exit(code=EXIT_INVALID_INPUT)

    store = _load_store(bundle)
    sources = [_load_source(path) for path in document]
    service = TemplateMatchingService(_load_settings(settings))
    candidates = _candidate_templates(store, None)

    try:
        result = BatchCoordinator(
            service, max_concurrent_operations=max_concurrent
        ).match_documents_batch(sources, candidates, minimum_confidence=min_confidence)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc

    _emit(result.model_dump(mode="json"), render_batch(result), output_mode, out)


@app.command("validate")
def validate_command(
    bundle: BundleOption,
    template_id: Annotated[str | None, typer.Option("--template-id")] = None,
    output: OutputOption = "human",
    out: OutOption = None,
) -> None:
    """Validate templates in a bundle; exit 2 when any template is invalid."""

    output_mode = _output_mode(output)
    store = _load_store(bundle)
    resolver = InheritanceResolver(store)

    if template_id is not None:
        target_ids = [template_id]
    else:
        target_ids = [template.id for template in store.list_templates()]

    reports = [validate_template(_resolve_or_exit(resolver, current_id)) for current_id in target_ids]
    set_errors = validate_active_set(store.list_templates(active_only=True))

    _emit(
        {
            "reports": [report.model_dump(mode="json") for report in reports],
            "set_errors": set_errors,
        },
        render_validation(reports, set_errors),
        output_mode,
        out,
    )
    if set_errors or not all(report.is_valid for report in reports):
        raise typer.Exit(code=EXIT_STRUCTURAL)


def _output_mode(output: str) -> OutputMode:
    normalized = output.lower().strip()
    if normalized not in {"human", "json"}:
        typer.echo("ERROR: --output must be one of: human, json.")
        raise typer.Exit(code=EXIT_INVALID_INPUT)
    return cast(OutputMode, normalized)


def _check_min_confidence(value: float | None) -> None:
    if value is not None and not 0.0 <= value <= 1.0:
        typer.echo("ERROR: --min-confidence must be between 0 and 1.")
        raise typer.Exit(code=EXIT_INVALID_INPUT)


def _load_store(bundle: Path) -> InMemoryTemplateStore:
    try:
        return load_template_bundle(bundle)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc


def _load_settings(path: Path | None) -> MatchingSettings:
    try:
        return load_settings(path)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc


def _load_document(path: Path) -> DocumentInput:
    try:
        return load_document_input(path)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc


def _load_source(path: Path) -> DocumentSource:
    return DocumentSource.from_input(_load_document(path))


def _resolve_or_exit(resolver: InheritanceResolver, template_id: str) -> EffectiveTemplate:
    try:
        effective = resolver.resolve(template_id)
        if effective is None:
            raise TemplateNotFoundError(f"Template not found: {template_id}", template_id=template_id)
    except TemplateNotFoundError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc
    except (CycleDetectedError, MissingAncestorError) as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_STRUCTURAL) from exc
    return effective


def _candidate_templates(
    store: InMemoryTemplateStore, template_ids: list[str] | None
) -> list[EffectiveTemplate]:
    """Resolve active templates; ones with a broken inheritance chain are skipped."""

    resolver = InheritanceResolver(store)
    wanted = set(template_ids) if template_ids else None
    candidates: list[EffectiveTemplate] = []
    for template in store.list_templates(active_only=True):
        if wanted is not None and template.id not in wanted:
            continue
        try:
            effective = resolver.resolve(template.id)
        except DocmatchError as exc:
            typer.echo(f"WARNING: skipping template {template.id}: {exc}", err=True)
            continue
        if effective is not None:
            candidates.append(effective)
    return candidates


def _emit(payload: dict[str, Any], human: str, output_mode: OutputMode, out: Path | None) -> None:
    typer.echo(dump_payload(payload) if output_mode == "json" else human)
    if out is not None:
        write_json_atomic(out, payload)
        if output_mode == "human":
            typer.echo(f"INFO: wrote {out}")


def main() -> None:
    """Poetry script entrypoint."""

    app()


if __name__ == "__main__":
    main()
