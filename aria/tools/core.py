from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, BaseModel, Field

from aria.errors import ToolErrorKind
from aria.tools.base import EmptyArgs, OutputItem, OutputKind, ToolContext, ToolResult, ToolSpec

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg"}
BUILTIN_ASSETS = ("aria",)


class ShowTextArgs(BaseModel):
    markdown: str = Field(..., min_length=1, validation_alias=AliasChoices("markdown", "text", "content"))


class ShowImageArgs(BaseModel):
    url: str = Field(..., min_length=1, validation_alias=AliasChoices("url", "image_url", "src"))


class AssetArgs(BaseModel):
    name: str = Field(..., min_length=1, validation_alias=AliasChoices("name", "asset"))


def list_asset_names(assets_dir: Path | None) -> list[str]:
    if assets_dir is None or not assets_dir.is_dir():
        return list(BUILTIN_ASSETS)
    names = {path.stem for path in assets_dir.iterdir() if path.suffix.lower() in IMAGE_SUFFIXES}
    return sorted(names) or list(BUILTIN_ASSETS)


def _assets_dir(ctx: ToolContext) -> Path | None:
    return getattr(ctx.settings, "assets_dir", None)


def show_text(args: ShowTextArgs, _: ToolContext) -> ToolResult:
    return ToolResult.ok("show_text", output=OutputItem(kind=OutputKind.MARKDOWN, payload=args.markdown))


def show_image(args: ShowImageArgs, _: ToolContext) -> ToolResult:
    if not args.url.startswith(("http://", "https://", "data:image/")):
        return ToolResult.failure("show_image", f"Unsupported image URL '{args.url}'", ToolErrorKind.INVALID_ARGUMENTS)
    return ToolResult.ok("show_image", output=OutputItem(kind=OutputKind.IMAGE, payload=args.url))


def show_asset_image(args: AssetArgs, ctx: ToolContext) -> ToolResult:
    available = list_asset_names(_assets_dir(ctx))
    if args.name not in available:
        return ToolResult.failure(
            "show_asset_image",
            f"Unknown asset '{args.name}'",
            ToolErrorKind.INVALID_ARGUMENTS,
        )
    return ToolResult.ok("show_asset_image", output=OutputItem(kind=OutputKind.IMAGE, payload=f"asset://{args.name}"))


def list_assets(_args: EmptyArgs, ctx: ToolContext) -> ToolResult:
    names = list_asset_names(_assets_dir(ctx))
    listing = "\n".join(f"- {name}" for name in names)
    noun = "asset" if len(names) == 1 else "assets"
    return ToolResult.ok(
        "list_assets",
        spoken_text=f"I have {len(names)} {noun} available.",
        output=OutputItem(kind=OutputKind.MARKDOWN, payload=f"**Available assets:**\n{listing}"),
    )


def core_tools(context: ToolContext) -> list[ToolSpec]:
    return [
        ToolSpec(
            name="show_text",
            description="Display markdown text on the output canvas",
            parameter_description="Args: markdown|text|content (string)",
            request_model=ShowTextArgs,
            handler=show_text,
            context=context,
        ),
        ToolSpec(
            name="show_image",
            description="Display an image from a URL on the output canvas",
            parameter_description="Args: url (string)",
            request_model=ShowImageArgs,
            handler=show_image,
            context=context,
        ),
        ToolSpec(
            name="show_asset_image",
            description="Display a named bundled asset image",
            parameter_description="Args: name (string)",
            request_model=AssetArgs,
            handler=show_asset_image,
            context=context,
        ),
        ToolSpec(
            name="list_assets",
            description="List the bundled asset images",
            parameter_description="No args",
            request_model=EmptyArgs,
            handler=list_assets,
            context=context,
        ),
    ]


__all__ = ["core_tools", "list_asset_names", "ShowTextArgs", "ShowImageArgs", "AssetArgs"]
