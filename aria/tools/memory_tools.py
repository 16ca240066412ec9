from __future__ import annotations

from pydantic import AliasChoices, BaseModel, Field

from aria.errors import DuplicateMemory, MemoryNotFound, ToolErrorKind
from aria.memory.models import MemoryType
from aria.tools.base import OutputItem, OutputKind, ToolContext, ToolResult, ToolSpec


class SaveMemoryArgs(BaseModel):
    content: str = Field(..., min_length=1, validation_alias=AliasChoices("content", "text", "memory"))
    type: MemoryType = MemoryType.FACT


class ListMemoriesArgs(BaseModel):
    type: MemoryType | None = None


class DeleteMemoryArgs(BaseModel):
    id: str = Field(..., min_length=4, validation_alias=AliasChoices("id", "memory_id"))


class ClearMemoriesArgs(BaseModel):
    confirm: bool = True


def _store(ctx: ToolContext):
    if ctx.memory is None:
        raise RuntimeError("memory store is not configured")
    return ctx.memory


async def save_memory(args: SaveMemoryArgs, ctx: ToolContext) -> ToolResult:
    try:
        row = await _store(ctx).add_memory(args.type, args.content, source="tool")
    except DuplicateMemory:
        return ToolResult.ok("save_memory", spoken_text="I already remember that.")
    return ToolResult.ok("save_memory", spoken_text=f"Saved {row.type.value}: {row.content} ({row.short_id})")


async def list_memories(args: ListMemoriesArgs, ctx: ToolContext) -> ToolResult:
    rows = await _store(ctx).list_memories(args.type)
    if not rows:
        return ToolResult.ok("list_memories", spoken_text="No memories found.")
    listing = "\n".join(f"- `{row.short_id}` [{row.type.value}] {row.content}" for row in rows)
    noun = "memory" if len(rows) == 1 else "memories"
    return ToolResult.ok(
        "list_memories",
        spoken_text=f"I have {len(rows)} {noun}.",
        output=OutputItem(kind=OutputKind.MARKDOWN, payload=f"**Memories**\n{listing}"),
    )


async def delete_memory(args: DeleteMemoryArgs, ctx: ToolContext) -> ToolResult:
    try:
        await _store(ctx).delete_memory(args.id)
    except MemoryNotFound:
        return ToolResult.failure("delete_memory", f"No memory with id '{args.id}'", ToolErrorKind.INVALID_ARGUMENTS)
    return ToolResult.ok("delete_memory", spoken_text="Memory deleted.")


async def clear_memories(args: ClearMemoriesArgs, ctx: ToolContext) -> ToolResult:
    if not args.confirm:
        return ToolResult.ok("clear_memories", spoken_text="Okay, I'll keep everything.")
    count = await _store(ctx).clear_memories()
    return ToolResult.ok("clear_memories", spoken_text=f"All memories have been cleared ({count}).")


def memory_tools(context: ToolContext) -> list[ToolSpec]:
    return [
        ToolSpec(
            name="save_memory",
            description="Save a fact, preference, note or check-in about the user",
            parameter_description="Args: content (string), type (fact|preference|note|checkin)",
            request_model=SaveMemoryArgs,
            handler=save_memory,
            context=context,
        ),
        ToolSpec(
            name="list_memories",
            description="List stored memories",
            parameter_description="Args: type (optional)",
            request_model=ListMemoriesArgs,
            handler=list_memories,
            context=context,
        ),
        ToolSpec(
            name="delete_memory",
            description="Delete one memory by its id",
            parameter_description="Args: id (string)",
            request_model=DeleteMemoryArgs,
            handler=delete_memory,
            context=context,
        ),
        ToolSpec(
            name="clear_memories",
            description="Delete all stored memories",
            parameter_description="Args: confirm (bool, default true)",
            request_model=ClearMemoriesArgs,
            handler=clear_memories,
            context=context,
        ),
    ]


__all__ = ["memory_tools", "SaveMemoryArgs", "ListMemoriesArgs", "DeleteMemoryArgs", "ClearMemoriesArgs"]
