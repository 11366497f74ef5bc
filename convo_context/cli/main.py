"""CLI: convo-context list, show, stats, select, analyze, export, archive, config validate."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from ..config import load_config, validate_config
from ..engine import ContextOptimizationEngine
from ..storage import build_store
from ..types import ConversationNotFound, ExportOptions


def _get_store(config_path: str | None = None):
    config = load_config(config_path)
    store = build_store(config)
    store.open()
    return store, config


def _fmt_dt(dt) -> str:
    return dt.strftime("%Y-%m-%d %H:%M") if dt else "n/a"


def cmd_list(args):
    """List conversations, most recent first."""
    store, config = _get_store(args.config)
    try:
        conversations = store.list_conversations()
        if not args.all:
            conversations = [c for c in conversations if not c.metadata.is_archived]
        if not conversations:
            print("No conversations yet.")
            return

        print(f"{'ID':<36} {'Title':<40} {'Msgs':>5} {'Updated':>17}  Flags")
        print("-" * 108)
        for c in conversations:
            flags = "".join([
                "P" if c.metadata.is_pinned else "",
                "A" if c.metadata.is_archived else "",
            ])
            print(f"{c.id:<36} {c.title[:40]:<40} {len(c.messages):>5} {_fmt_dt(c.updated_at):>17}  {flags}")
    finally:
        store.close()


def cmd_show(args):
    """Print one conversation's transcript."""
    store, config = _get_store(args.config)
    try:
        conv = store.get_conversation(args.conversation_id)
        if conv is None:
            print(f"Conversation not found: {args.conversation_id}", file=sys.stderr)
            sys.exit(1)
        print(f"{conv.title}  ({conv.id}, model {conv.model})")
        print(f"Messages: {len(conv.messages)}  Tokens used: {conv.metadata.total_tokens_used:,}")
        print()
        for msg in conv.messages[-args.limit:] if args.limit else conv.messages:
            print(f"[{_fmt_dt(msg.timestamp)}] {msg.role}: {msg.content}")
    finally:
        store.close()


def cmd_stats(args):
    """Show storage statistics."""
    store, config = _get_store(args.config)
    try:
        stats = store.get_storage_stats()
        location = config.storage.sqlite_path if config.storage.backend == "sqlite" else config.storage.root
        print(f"Storage:        {config.storage.backend} ({location})")
        print(f"Conversations:  {stats.conversation_count}")
        print(f"Messages:       {stats.message_count}")
        print(f"Archived:       {stats.archived_count}")
        print(f"Pinned:         {stats.pinned_count}")
        print(f"Size:           {stats.total_storage_used:,} bytes ({stats.usage_ratio:.1%} of quota)")
        print(f"Oldest:         {_fmt_dt(stats.oldest_conversation)}")
        print(f"Newest:         {_fmt_dt(stats.newest_conversation)}")
    finally:
        store.close()


def cmd_select(args):
    """Run context selection for a query against a stored conversation."""
    config = load_config(args.config)
    with ContextOptimizationEngine(config=config) as engine:
        conv = engine.store.get_conversation(args.conversation_id)
        if conv is None:
            print(f"Conversation not found: {args.conversation_id}", file=sys.stderr)
            sys.exit(1)
        selection = engine.select_context(conv.id, conv.messages, args.query, args.budget)
        budget = args.budget or config.selector.token_budget
        print(f"Strategy:   {selection.strategy.value}")
        print(f"Selected:   {len(selection.messages)}/{len(conv.messages)} messages")
        print(f"Tokens:     {selection.estimated_tokens:,} / {budget:,}")
        if selection.truncated:
            print("Truncated:  latest message alone exceeds the budget")
        if selection.query_analysis is not None:
            qa = selection.query_analysis
            print(f"Query:      intent={qa.intent.value} scope={qa.time_scope.value} "
                  f"history={'yes' if qa.requires_history else 'no'} complexity={qa.complexity:.2f}")
        print()
        for msg in selection.messages:
            score = selection.scores.get(msg.id)
            label = f"{score:.2f}" if score is not None else "  - "
            preview = msg.content.replace("\n", " ")[:80]
            print(f"  {label}  {msg.role:<9} {preview}")


def cmd_analyze(args):
    """Show topic clusters, phases and session metrics for a conversation."""
    config = load_config(args.config)
    with ContextOptimizationEngine(config=config) as engine:
        try:
            analysis = engine.analyze_conversation(args.conversation_id)
        except ConversationNotFound as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        print("Topic clusters:")
        for c in analysis.clusters:
            print(f"  {c.name:<25} {c.importance:>6.1%}  ({len(c.message_ids)} messages)")
        print()
        print(f"Phases (continuity {analysis.flow.continuity:.2f}):")
        for p in analysis.flow.phases:
            print(f"  {p.id:<10} {p.type.value:<22} turns {p.start_turn}-{p.end_turn}  "
                  f"{p.primary_topic:<15} {p.resolution.value}")
        print()
        print(f"Current focus:   {', '.join(analysis.current_focus) or 'n/a'}")
        m = analysis.metrics
        print(f"Messages:        {m.message_count} ({m.user_message_count} user / {m.assistant_message_count} assistant)")
        print(f"Topic switches:  {m.topic_switches}")
        print(f"Question ratio:  {m.question_ratio:.0%}")
        print(f"Code blocks:     {m.code_blocks}")
        print(f"Style / level:   {analysis.profile.communication_style} / {analysis.profile.technical_level}")
        for t in analysis.transitions:
            print(f"  turn {t.turn_index}: {t.transition_type.value} {t.bridge}")


def cmd_export(args):
    """Export conversations as json, markdown or csv."""
    store, config = _get_store(args.config)
    try:
        options = ExportOptions(
            format=args.format or config.settings.export_format,
            include_metadata=not args.no_metadata,
            conversation_ids=args.ids or None,
        )
        output = store.export_conversations(options)
    finally:
        store.close()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Exported to {args.output}")
    else:
        print(output)


def cmd_archive(args):
    """Archive conversations idle longer than the configured age."""
    store, config = _get_store(args.config)
    try:
        archived = store.archive_inactive()
    finally:
        store.close()
    print(f"Archived {len(archived)} conversation(s) idle more than "
          f"{config.settings.auto_archive_after_days} days.")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Storage: {config.storage.backend}")
        print(f"  Token budget: {config.selector.token_budget:,}")
        print(f"  Weights: recency={config.selector.recency_weight} "
              f"importance={config.selector.importance_weight} "
              f"relevance={config.selector.relevance_weight}")
        print(f"  Quick replies: {'on' if config.quick_reply.enabled else 'off'}")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="convo-context",
        description="Conversation context optimization and storage",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # list
    list_parser = subparsers.add_parser("list", help="List conversations")
    list_parser.add_argument("--all", action="store_true", help="Include archived conversations")

    # show
    show_parser = subparsers.add_parser("show", help="Show a conversation transcript")
    show_parser.add_argument("conversation_id", help="Conversation id")
    show_parser.add_argument("--limit", type=int, default=0, help="Only the last N messages")

    # stats
    subparsers.add_parser("stats", help="Show storage statistics")

    # select
    select_parser = subparsers.add_parser("select", help="Select context for a query")
    select_parser.add_argument("conversation_id", help="Conversation id")
    select_parser.add_argument("--query", "-q", required=True, help="The new user query")
    select_parser.add_argument("--budget", "-b", type=int, default=None, help="Token budget")

    # analyze
    analyze_parser = subparsers.add_parser("analyze", help="Topic and phase analysis")
    analyze_parser.add_argument("conversation_id", help="Conversation id")

    # export
    export_parser = subparsers.add_parser("export", help="Export conversations")
    export_parser.add_argument("--format", "-f", choices=["json", "markdown", "csv"], default=None)
    export_parser.add_argument("--output", "-o", help="Write to file instead of stdout")
    export_parser.add_argument("--ids", nargs="*", help="Only these conversation ids")
    export_parser.add_argument("--no-metadata", action="store_true", help="Omit metadata")

    # archive
    subparsers.add_parser("archive", help="Archive inactive conversations")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "list":
        cmd_list(args)
    elif args.command == "show":
        cmd_show(args)
    elif args.command == "stats":
        cmd_stats(args)
    elif args.command == "select":
        cmd_select(args)
    elif args.command == "analyze":
        cmd_analyze(args)
    elif args.command == "export":
        cmd_export(args)
    elif args.command == "archive":
        cmd_archive(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            config_parser.print_help()
            sys.exit(1)


if __name__ == "__main__":
    main()
