"""Click CLI entry point for the skelmesh importer."""

from __future__ import annotations

import json
from pathlib import Path

import click

from skelmesh import __version__
from skelmesh.animation import sample_and_propagate
from skelmesh.errors import SkelmeshError
from skelmesh.exporter import export_gltf
from skelmesh.importer import Model, load_model
from skelmesh.warning_policy import WarningPolicy, parse_code_list


def _build_warning_policy(
    warn_as_error: str | None, suppress_warning: str | None
) -> WarningPolicy | None:
    """Parse CLI warning options into a WarningPolicy, or None if unset."""
    if warn_as_error is None and suppress_warning is None:
        return None
    try:
        wae = parse_code_list(warn_as_error) if warn_as_error else frozenset()
        sup = parse_code_list(suppress_warning) if suppress_warning else frozenset()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    return WarningPolicy(warn_as_error=wae, suppress=sup)


def _default_output(input_file: Path) -> Path:
    stem = input_file.name
    for suffix in [".scene.yaml", ".scene.yml", ".yaml", ".yml"]:
        if stem.endswith(suffix):
            stem = stem[: -len(suffix)]
            break
    return input_file.parent / f"{stem}.glb"


warn_as_error_option = click.option(
    "--warn-as-error",
    "warn_as_error",
    type=str,
    default=None,
    help="Comma-separated W-codes to treat as errors (e.g. W01,W02), or 'all'.",
)
suppress_warning_option = click.option(
    "--suppress-warning",
    "suppress_warning",
    type=str,
    default=None,
    help="Comma-separated W-codes to suppress (e.g. W03), or 'all'.",
)


@click.group()
@click.version_option(version=__version__, prog_name="skelmesh")
def main() -> None:
    """skelmesh: skinned mesh and joint animation importer."""


@main.command()
@click.argument("input_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Output GLB file path. Defaults to input name with .glb extension.",
)
@warn_as_error_option
@suppress_warning_option
def compile(
    input_file: Path,
    output: Path | None,
    warn_as_error: str | None = None,
    suppress_warning: str | None = None,
) -> None:
    """Import a scene description and write it as GLB."""
    warning_policy = _build_warning_policy(warn_as_error, suppress_warning)
    if output is None:
        output = _default_output(input_file)

    try:
        model = load_model(input_file, warning_policy=warning_policy)
        export_gltf(model, output)
    except SkelmeshError as e:
        raise click.ClickException(str(e))
    click.echo(f"Compiled: {output}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Inspection output format.",
)
@warn_as_error_option
@suppress_warning_option
def inspect(
    input_file: Path,
    output_format: str = "text",
    warn_as_error: str | None = None,
    suppress_warning: str | None = None,
) -> None:
    """Summarize joints, mesh parts and animations without exporting."""
    warning_policy = _build_warning_policy(warn_as_error, suppress_warning)
    try:
        model = load_model(input_file, warning_policy=warning_policy)
    except SkelmeshError as e:
        raise click.ClickException(str(e))

    payload = inspect_model(model)
    if output_format == "json":
        click.echo(json.dumps(payload, indent=2))
    else:
        click.echo(render_text(payload), nl=False)


@main.command()
@click.argument("input_file", type=click.Path(exists=True, path_type=Path))
@click.option("--time", "time", type=float, required=True, help="Sample time in seconds.")
@click.option(
    "--animation",
    "animation_name",
    type=str,
    default=None,
    help="Animation name or id. Defaults to the first animation.",
)
def sample(input_file: Path, time: float, animation_name: str | None = None) -> None:
    """Print every joint's absolute translation at TIME as JSON."""
    try:
        model = load_model(input_file)
        if len(model.animations) == 0:
            raise click.ClickException("Scene has no joint animations")
        if animation_name is None:
            animation = model.animations[0]
        else:
            animation = model.animations.get(animation_name)
            if animation is None:
                raise click.ClickException(f"Animation {animation_name!r} not found")
        sample_and_propagate(animation, time, model.joints)
    except SkelmeshError as e:
        raise click.ClickException(str(e))

    payload = {
        "time": time,
        "animation": animation.name or animation.global_id,
        "joints": [
            {
                "index": j.index,
                "name": j.name,
                "translation": [round(float(v), 6) for v in j.absolute_transform[:3, 3]],
            }
            for j in model.joints
        ],
    }
    click.echo(json.dumps(payload, indent=2))


def inspect_model(model: Model) -> dict:
    """JSON-ready summary of an imported model."""
    return {
        "joints": [
            {
                "index": j.index,
                "name": j.name,
                "parent": j.parent,
                "children": list(j.children),
            }
            for j in model.joints
        ],
        "meshes": [
            {
                "name": mesh.name,
                "skinned": mesh.skinned,
                "parts": [
                    {
                        "material": part.material,
                        "vertex_count": part.mesh.vertex_count,
                        "index_count": len(part.mesh.index_buffer),
                        "vertex_stride": part.mesh.vertex_stride,
                        "index_format": part.mesh.index_format,
                        "layout": [
                            {
                                "kind": d.kind,
                                "format": d.format,
                                "components": d.component_count,
                                "byte_offset": d.byte_offset,
                            }
                            for d in part.mesh.channel_layout
                        ],
                    }
                    for part in mesh.parts
                ],
            }
            for mesh in model.meshes
        ],
        "animations": [
            {
                "name": anim.name,
                "id": anim.global_id,
                "channels": len(anim.channels),
                "frames": anim.num_frames,
                "start_time": anim.start_time,
                "end_time": anim.end_time,
            }
            for anim in model.animations
        ],
    }


def render_text(payload: dict) -> str:
    lines = [f"Joints: {len(payload['joints'])}"]
    for j in payload["joints"]:
        lines.append(f"  [{j['index']}] {j['name']} (parent: {j['parent']})")
    lines.append(f"Meshes: {len(payload['meshes'])}")
    for mesh in payload["meshes"]:
        lines.append(f"  {mesh['name']}{' (skinned)' if mesh['skinned'] else ''}")
        for part in mesh["parts"]:
            kinds = ", ".join(d["kind"] for d in part["layout"])
            lines.append(
                f"    {part['material'] or '-'}: {part['vertex_count']} vertices, "
                f"{part['index_count']} indices, stride {part['vertex_stride']} [{kinds}]"
            )
    lines.append(f"Animations: {len(payload['animations'])}")
    for anim in payload["animations"]:
        lines.append(
            f"  {anim['name'] or anim['id']}: {anim['channels']} channels, "
            f"{anim['frames']} frames, {anim['start_time']}..{anim['end_time']}"
        )
    return "\n".join(lines) + "\n"
