"""Command-line interface for scim-steward."""

import json
import sys
from typing import Optional

import click

from . import __version__
from .config import build_registry, configure_logging, load_config
from .errors import SCIMError
from .patch import PatchEngine, parse_patch_request
from .registry import SchemaRegistry
from .resource import coerce_resource
from .validator import ResourceValidator, ValidationResult, validate_file, validate_string


def _print_error(message: str):
    click.secho(f"❌ {message}", fg="red")


def _print_success(message: str):
    click.secho(f"✅ {message}", fg="green")


def _report(result: ValidationResult, label: str) -> int:
    """Print a validation result. Returns exit code."""
    if result.is_valid:
        _print_success(f"Valid {label}")
        return 0
    click.secho(f"\nFound {len(result.errors)} error(s):\n", bold=True)
    for error in result.errors:
        _print_error(str(error))
    return 1


def _registry(ctx: click.Context, catalog: Optional[str]) -> SchemaRegistry:
    config = dict(ctx.obj["config"])
    if catalog:
        config["catalog"] = catalog
    return build_registry(config)


def _load_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              help="Configuration file (default: ./scim-steward.json when present)")
@click.option("--log-level", default=None, help="Logging level, e.g. DEBUG or INFO")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]):
    """Validate and patch SCIM 2.0 resources (RFC 7643/7644).

    Examples:

    \b
      scim-steward validate user.json
      scim-steward validate --patch patch.json
      echo '{"schemas":[...]}' | scim-steward validate --stdin
      scim-steward patch user.json patch.json
    """
    config = load_config(config_path)
    configure_logging(log_level or config["logging"]["level"])
    ctx.obj = {"config": config}


@main.command()
@click.argument("file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("--patch", is_flag=True, help="Validate as a PatchOp message")
@click.option("--stdin", is_flag=True, help="Read JSON from stdin")
@click.option("--resource-type", default=None, help="Resource type; inferred from 'schemas' when omitted")
@click.option("--catalog", type=click.Path(exists=True, dir_okay=False), help="Extension catalog JSON file")
@click.pass_context
def validate(ctx: click.Context, file: Optional[str], patch: bool, stdin: bool,
             resource_type: Optional[str], catalog: Optional[str]):
    """Validate a SCIM resource or PATCH request."""
    operation = "patch" if patch else "full"
    label = "PATCH request" if patch else "SCIM resource"

    if not stdin and not file:
        click.echo(ctx.get_help())
        ctx.exit(1)

    try:
        registry = _registry(ctx, catalog)
    except (SCIMError, ValueError, OSError) as e:
        _print_error(f"Could not load extension catalog: {e}")
        ctx.exit(1)

    if stdin:
        result = validate_string(sys.stdin.read(), operation, registry, resource_type)
    else:
        result = validate_file(file, operation, registry, resource_type)
    ctx.exit(_report(result, label))


@main.command()
@click.argument("resource_file", metavar="RESOURCE", type=click.Path(exists=True, dir_okay=False))
@click.argument("patch_file", metavar="PATCH", type=click.Path(exists=True, dir_okay=False))
@click.option("--resource-type", default=None, help="Resource type; inferred from 'schemas' when omitted")
@click.option("--catalog", type=click.Path(exists=True, dir_okay=False), help="Extension catalog JSON file")
@click.option("--indent", default=2, show_default=True, help="Indentation of the JSON output")
@click.pass_context
def patch(ctx: click.Context, resource_file: str, patch_file: str, resource_type: Optional[str],
          catalog: Optional[str], indent: int):
    """Apply a PatchOp message to a resource and print the result.

    The patched resource is re-validated against the original, so readOnly
    and immutable attributes cannot change.
    """
    try:
        resource_data = _load_json(resource_file)
        patch_data = _load_json(patch_file)
    except json.JSONDecodeError as e:
        _print_error(f"Invalid JSON: {e}")
        ctx.exit(1)

    try:
        registry = _registry(ctx, catalog)
        original = coerce_resource(resource_data, resource_type, registry)
        operations = parse_patch_request(patch_data)
        patched = PatchEngine(registry).apply_patch(original, operations)
    except (SCIMError, TypeError, ValueError, OSError) as e:
        _print_error(f"Patch failed: {e}")
        ctx.exit(1)

    result = ResourceValidator(registry).validate(patched, current=original)
    if not result.is_valid:
        ctx.exit(_report(result, "patched resource"))

    click.echo(json.dumps(patched.to_dict(), indent=indent))


if __name__ == "__main__":
    main()
